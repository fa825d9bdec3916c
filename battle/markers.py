"""Marker parsing: the seam between free-form model text and the state machine.

Two markers are recognised:

* ``AGREED: <conclusion>``: a participant (or the referee) states the
  conclusion it considers final. Matched case-insensitively anywhere in the
  text, with optional Markdown emphasis (``**AGREED:**``, ``__AGREED__:``).
  Words that merely end in "agreed" (``DISAGREED:``) do not count.
* ``CONSENSUS: YES|NO``: the referee's per-round verdict.

Only the first marker of each kind is considered.
"""

import re

from battle.models import MarkerResult, RefereeVerdict

_AGREED_RE = re.compile(
    r"(?<![A-Za-z])[*_]{0,2}AGREED[*_]{0,2}[ \t]*:(?P<rest>[^\r\n]*)",
    re.IGNORECASE,
)
_CONSENSUS_RE = re.compile(
    r"(?<![A-Za-z])[*_]{0,2}CONSENSUS[*_]{0,2}[ \t]*:[*_ \t]*(?P<verdict>YES|NO)\b[*_]*(?P<rest>[^\r\n]*)",
    re.IGNORECASE,
)
_EMPHASIS_CHARS = "*_`"


def _clean(fragment: str) -> str:
    return fragment.strip().strip(_EMPHASIS_CHARS).strip()


def parse_agreement(text: str | None) -> MarkerResult:
    """Detect the agreement marker and extract the conclusion on its line."""
    if not text:
        return MarkerResult(has_marker=False)
    match = _AGREED_RE.search(text)
    if not match:
        return MarkerResult(has_marker=False)
    return MarkerResult(has_marker=True, conclusion=_clean(match.group("rest")))


def has_agreement(text: str | None) -> bool:
    return parse_agreement(text).has_marker


def parse_referee_verdict(text: str | None) -> RefereeVerdict:
    """Parse a free-mode referee document.

    ``CONSENSUS: YES`` only carries a conclusion when an ``AGREED:`` marker
    follows it on the same line or on the next non-blank line.
    """
    if not text:
        return RefereeVerdict(summary="")

    match = _CONSENSUS_RE.search(text)
    if not match or match.group("verdict").upper() != "YES":
        return RefereeVerdict(summary=text)

    candidates = [match.group("rest")]
    following = text[match.end():].splitlines()[1:]
    next_line = next((line for line in following if line.strip()), "")
    candidates.append(next_line)

    for candidate in candidates:
        result = parse_agreement(candidate)
        if result.has_marker and result.conclusion:
            return RefereeVerdict(summary=text, consensus_decided=True, conclusion=result.conclusion)

    return RefereeVerdict(summary=text, consensus_decided=True, conclusion=None)
