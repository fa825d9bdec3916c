"""Prompt assembly for agent turns and referee calls."""

from config.config_loader import PromptsConfig
from battle.models import AgentIdentity, PeerView


def response_block(name: str, text: str, note: str = "") -> str:
    body = f"{note}\n{text}" if note else text
    return f"<{name}_response>\n{body}\n</{name}_response>\n\n"


def _peer_note(name: str, view: PeerView) -> str:
    if view.skipped_round is None or view.skipped_round <= view.round_number:
        return ""
    if not view.text:
        return f"({name} gave no reply in round {view.skipped_round}.)"
    return (
        f"({name} gave no reply in round {view.skipped_round}; "
        f"its last reply, from round {view.round_number}, follows.)"
    )


def peer_context(speaker: AgentIdentity, roster: list[AgentIdentity], peers: dict[str, PeerView]) -> str:
    """Every other identity's latest reply, in roster order. Never includes the speaker."""
    parts: list[str] = []
    for other in roster:
        if other == speaker:
            continue
        view = peers.get(other.display_name)
        if view is None:
            parts.append(response_block(other.display_name, "", f"({other.display_name} has not replied yet.)"))
            continue
        parts.append(response_block(other.display_name, view.text, _peer_note(other.display_name, view)))
    return "".join(parts)


def round_replies(
    roster: list[AgentIdentity], peers: dict[str, PeerView], round_number: int
) -> list[tuple[str, str]]:
    """(display name, reply) from `round_number` for every identity, in roster order.

    An identity with no reply from that round gets a note instead of its older text.
    """
    replies: list[tuple[str, str]] = []
    for agent in roster:
        view = peers.get(agent.display_name)
        if view is not None and view.round_number == round_number:
            replies.append((agent.display_name, view.text))
        else:
            replies.append((agent.display_name, f"({agent.display_name} gave no reply in round {round_number}.)"))
    return replies


def opening_prompt(prompts: PromptsConfig, problem: str) -> str:
    return prompts.opening.format(problem=problem)


def followup_prompt(
    prompts: PromptsConfig,
    speaker: AgentIdentity,
    roster: list[AgentIdentity],
    peers: dict[str, PeerView],
    remaining: int,
    steering: str = "",
) -> str:
    prompt = prompts.followup.format(
        peer_responses=peer_context(speaker, roster, peers),
        remaining=remaining,
    )
    if steering:
        prompt += prompts.steering.format(steering=steering)
    return prompt


def confirm_prompt(prompts: PromptsConfig, proposer: AgentIdentity, conclusion: str) -> str:
    return prompts.confirm.format(proposer=proposer.display_name, conclusion=conclusion)


def system_prompt(prompts: PromptsConfig, max_rounds: int) -> str:
    return prompts.system.format(max_rounds=max_rounds)
