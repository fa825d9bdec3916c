"""problem.md loading and frontmatter parsing."""

from dataclasses import dataclass, field
from pathlib import Path

import frontmatter

from battle.errors import ProblemFileError


@dataclass
class Problem:
    text: str
    source: Path
    metadata: dict = field(default_factory=dict)

    @property
    def agents(self) -> str | None:
        value = self.metadata.get("agents")
        if value is None:
            return None
        if isinstance(value, list):
            return ",".join(str(v) for v in value)
        return str(value)

    @property
    def rounds(self) -> int | None:
        value = self.metadata.get("rounds")
        return int(value) if value is not None else None

    @property
    def referee(self) -> str | None:
        """Referee base name; "" means "first roster member", None means off."""
        value = self.metadata.get("referee")
        if value is True:
            return ""
        return str(value) if value else None

    @property
    def steering(self) -> bool:
        return bool(self.metadata.get("steer", False))


def load_problem(file_path: Path) -> Problem:
    """Parse a markdown problem statement with optional YAML frontmatter.

    Frontmatter keys: agents (str or list), rounds (int), referee (str), steer (bool).

    Raises:
        ProblemFileError: If the file does not exist or its body is empty.
    """
    if not file_path.exists():
        raise ProblemFileError(f"{file_path} not found. Write the discussion topic into it first.")
    post = frontmatter.load(str(file_path))
    content = post.content.strip()
    if not content:
        raise ProblemFileError(f"{file_path} is empty")
    return Problem(text=content, source=file_path, metadata=dict(post.metadata))
