"""Tests for battle/executor.py: the round state machine end to end with scripted backends."""

import json

import pytest

from battle.errors import RunAborted
from battle.executor import RoundExecutor
from battle.interaction import EscalationChoice
from battle.models import AgentIdentity, RunStatus
from battle.persistence import load_resume_snapshot
from battle.registry import AgentRegistry
from battle.roster import resolve_roster
from tests.conftest import ScriptedBackend, ScriptedOperator, failing, make_context


def _state(store) -> dict:
    return json.loads(store.state_path.read_text(encoding="utf-8"))


async def test_round_one_prompts_carry_no_peer_content(store, sample_prompts_config):
    a = ScriptedBackend("a", script={"round_1_a": "A opening thoughts"})
    b = ScriptedBackend("b", script={"round_1_b": "B opening thoughts"})
    ctx = make_context(store, sample_prompts_config, [a, b], max_rounds=1)

    await RoundExecutor(ctx).run()

    assert a.prompt_for("round_1_a") == "Problem: Tabs or spaces?"
    assert b.prompt_for("round_1_b") == "Problem: Tabs or spaces?"
    assert "B opening" not in a.prompt_for("round_1_a")
    assert "A opening" not in b.prompt_for("round_1_b")


async def test_round_two_context_asymmetry(store, sample_prompts_config):
    a = ScriptedBackend("a", script={"round_1_a": "A1 text", "round_2_a": "A2 text"})
    b = ScriptedBackend("b", script={"round_1_b": "B1 text", "round_2_b": "B2 text"})
    ctx = make_context(store, sample_prompts_config, [a, b], max_rounds=2)

    await RoundExecutor(ctx).run()

    prompt_a = a.prompt_for("round_2_a")
    assert "B1 text" in prompt_a
    assert "A1 text" not in prompt_a
    assert "<b_response>" in prompt_a

    prompt_b = b.prompt_for("round_2_b")
    assert "A2 text" in prompt_b
    assert "A1 text" not in prompt_b
    assert "B1 text" not in prompt_b


async def test_remaining_rounds_hint(store, sample_prompts_config):
    a = ScriptedBackend("a")
    b = ScriptedBackend("b")
    ctx = make_context(store, sample_prompts_config, [a, b], max_rounds=3)

    await RoundExecutor(ctx).run()

    assert "Rounds left: 1" in a.prompt_for("round_2_a")
    assert "Rounds left: 0" in a.prompt_for("round_3_a")


async def test_all_agreed_in_round_one_uses_first_roster_conclusion(store, sample_prompts_config):
    a = ScriptedBackend("a", script={"round_1_a": "Spaces.\nAGREED: use spaces"})
    b = ScriptedBackend("b", script={"round_1_b": "Fine.\n**AGREED:** spaces everywhere"})
    ctx = make_context(store, sample_prompts_config, [a, b], max_rounds=3)

    outcome = await RoundExecutor(ctx).run()

    assert outcome.status is RunStatus.CONSENSUS
    assert outcome.conclusion == "use spaces"
    assert outcome.rounds_completed == 1
    assert not any(tag.endswith("_confirm") for tag in a.tags() + b.tags())
    assert store.read_consensus() == "use spaces"
    assert _state(store)["status"] == "consensus"


async def test_handshake_confirmed_finalizes_with_proposer_text(store, sample_prompts_config):
    a = ScriptedBackend("a", script={"round_2_a": "I think we agree.\nAGREED: adopt plan X"})
    b = ScriptedBackend("b", script={"round_2_b_confirm": "Yes.\nAGREED: adopt plan X, roughly"})
    ctx = make_context(store, sample_prompts_config, [a, b], max_rounds=4)

    outcome = await RoundExecutor(ctx).run()

    assert outcome.status is RunStatus.CONSENSUS
    assert outcome.conclusion == "adopt plan X"
    assert outcome.rounds_completed == 2
    assert "round_2_b" not in b.tags()
    assert store.response_path(2, AgentIdentity("b"), confirm=True).exists()
    assert [t.kind for t in ctx.turns][-1] == "confirm"


async def test_dissent_blocks_finalization_and_becomes_round_record(store, sample_prompts_config):
    a = ScriptedBackend("a", script={"round_3_a": "Final answer.\nAGREED: adopt plan X"})
    b = ScriptedBackend("b", script={"round_3_b_confirm": "No. Plan Y handles the edge cases."})
    ctx = make_context(store, sample_prompts_config, [a, b], max_rounds=4)

    outcome = await RoundExecutor(ctx).run()

    assert outcome.status is RunStatus.NO_CONSENSUS
    assert outcome.conclusion is None
    assert store.read_response(3, AgentIdentity("b")) == "No. Plan Y handles the edge cases."
    assert "round_3_b" not in b.tags()
    assert "round_4_a" in a.tags()
    assert "Plan Y handles the edge cases" in a.prompt_for("round_4_a")
    assert not store.consensus_path.exists()


async def test_handshake_needs_every_other_identity(store, sample_prompts_config):
    a = ScriptedBackend("a", script={"round_2_a": "AGREED: ship it"})
    b = ScriptedBackend("b", script={"round_2_b_confirm": "AGREED: ship it"})
    c = ScriptedBackend("c", script={"round_2_c_confirm": "I disagree"})
    ctx = make_context(store, sample_prompts_config, [a, b, c], max_rounds=2)

    outcome = await RoundExecutor(ctx).run()

    assert outcome.status is RunStatus.NO_CONSENSUS
    assert store.read_response(2, AgentIdentity("c")) == "I disagree"
    # b confirmed but still takes its regular turn; c's dissent consumed its turn
    assert "round_2_b" in b.tags()
    assert "round_2_c" not in c.tags()


async def test_unreachable_confirmer_blocks_finalization(store, sample_prompts_config):
    a = ScriptedBackend("a", script={"round_2_a": "AGREED: ship it"})
    b = ScriptedBackend("b", script={"round_2_b_confirm": failing("b")})
    operator = ScriptedOperator(escalations=[EscalationChoice.SKIP])
    ctx = make_context(store, sample_prompts_config, [a, b], operator=operator, max_rounds=2)

    outcome = await RoundExecutor(ctx).run()

    assert outcome.status is RunStatus.NO_CONSENSUS
    assert operator.failures == ["b [confirm round 2]"]
    # b was unreachable for the handshake but still gets its regular turn
    assert "round_2_b" in b.tags()


async def test_referee_free_mode_finalizes_on_yes_with_agreed(store, sample_prompts_config):
    a = ScriptedBackend("a")
    b = ScriptedBackend("b")
    ref = ScriptedBackend(
        "ref",
        script={"referee_round_2": "Both now back plan X.\nCONSENSUS: YES\nAGREED: adopt plan X"},
        default="Summary so far.",
    )
    ctx = make_context(store, sample_prompts_config, [a, b], max_rounds=4, referee=ref)

    outcome = await RoundExecutor(ctx).run()

    assert outcome.status is RunStatus.CONSENSUS
    assert outcome.conclusion == "adopt plan X"
    assert outcome.rounds_completed == 2
    assert store.referee_path(2).exists()
    assert "final_summary" in ref.tags()
    assert outcome.summary_path == str(store.summary_path)


async def test_referee_bare_yes_does_not_finalize(store, sample_prompts_config):
    a = ScriptedBackend("a")
    b = ScriptedBackend("b")
    ref = ScriptedBackend("ref", default="Looks aligned.\nCONSENSUS: YES")
    ctx = make_context(store, sample_prompts_config, [a, b], max_rounds=3, referee=ref)

    outcome = await RoundExecutor(ctx).run()

    assert outcome.status is RunStatus.NO_CONSENSUS
    assert outcome.rounds_completed == 3


async def test_referee_steering_mode_never_finalizes(store, sample_prompts_config):
    a = ScriptedBackend("a")
    b = ScriptedBackend("b")
    ref = ScriptedBackend("ref", default="| a | b |\nCONSENSUS: YES\nAGREED: plan X")
    operator = ScriptedOperator()
    ctx = make_context(
        store, sample_prompts_config, [a, b], operator=operator, max_rounds=2, steering=True, referee=ref
    )

    outcome = await RoundExecutor(ctx).run()

    assert outcome.status is RunStatus.NO_CONSENSUS
    assert ref.calls[0][0] == "You are the referee. Build a comparison table."


async def test_silent_referee_does_not_stop_the_run(store, sample_prompts_config):
    a = ScriptedBackend("a", script={"round_2_a": "AGREED: done"})
    b = ScriptedBackend("b", script={"round_2_b_confirm": "AGREED: done"})
    ref = ScriptedBackend("ref", default="")
    ctx = make_context(store, sample_prompts_config, [a, b], max_rounds=3, referee=ref)

    outcome = await RoundExecutor(ctx).run()

    assert outcome.status is RunStatus.CONSENSUS
    assert outcome.conclusion == "done"
    assert outcome.summary_path is None
    assert store.read_consensus() == "done"


async def test_steering_is_appended_to_next_round_prompts(store, sample_prompts_config):
    a = ScriptedBackend("a")
    b = ScriptedBackend("b")
    operator = ScriptedOperator(steering=["Budget is 10k", ""])
    ctx = make_context(store, sample_prompts_config, [a, b], operator=operator, max_rounds=3, steering=True)

    await RoundExecutor(ctx).run()

    # solicited after round 1 and round 2, never after the last round
    assert operator.steering_rounds == [1, 2]
    assert "Budget is 10k" in a.prompt_for("round_2_a")
    assert "Budget is 10k" in b.prompt_for("round_2_b")
    assert "Budget is 10k" not in a.prompt_for("round_3_a")
    assert store.read_steering(1) == "Budget is 10k"
    assert store.read_steering(2) == ""


async def test_extension_continues_from_next_round(store, sample_prompts_config):
    a = ScriptedBackend("a")
    b = ScriptedBackend("b")
    operator = ScriptedOperator(extensions=[2, 0])
    ctx = make_context(store, sample_prompts_config, [a, b], operator=operator, max_rounds=2)

    outcome = await RoundExecutor(ctx).run()

    assert operator.extension_calls == [(2, 2), (4, 4)]
    assert outcome.status is RunStatus.NO_CONSENSUS
    assert outcome.rounds_completed == 4
    assert "round_3_a" in a.tags() and "round_4_b" in b.tags()
    for round_number in range(1, 5):
        assert store.read_response(round_number, AgentIdentity("a")) is not None
    assert _state(store)["max_rounds"] == 4
    assert "at most 4 rounds" in a.calls[-1][0]


async def test_state_persisted_after_every_round(store, sample_prompts_config):
    seen: list[int] = []
    a = ScriptedBackend("a")
    b = ScriptedBackend("b")
    operator = ScriptedOperator()
    ctx = make_context(store, sample_prompts_config, [a, b], operator=operator, max_rounds=3)
    ctx.on_turn = lambda turn: seen.append(_state(store)["current_round"]) if turn.speaker == "a" else None

    await RoundExecutor(ctx).run()

    # state written after round 1 and round 2 before the next round's replies arrive
    assert seen == [0, 1, 2]
    assert _state(store)["current_round"] == 3
    assert _state(store)["status"] == "no_consensus"


async def test_skip_marks_peer_as_missing_in_next_prompt(store, sample_prompts_config):
    a = ScriptedBackend("a", script={"round_1_a": "A1", "round_2_a": failing("a")})
    b = ScriptedBackend("b")
    operator = ScriptedOperator(escalations=[EscalationChoice.SKIP])
    ctx = make_context(store, sample_prompts_config, [a, b], operator=operator, max_rounds=2)

    await RoundExecutor(ctx).run()

    prompt_b = b.prompt_for("round_2_b")
    assert "a gave no reply in round 2" in prompt_b
    assert "A1" in prompt_b
    assert store.read_response(2, AgentIdentity("a")) is None


async def test_referee_sees_no_stale_text_for_a_skipped_agent(store, sample_prompts_config):
    a = ScriptedBackend("a", script={"round_1_a": "A1 earlier view", "round_2_a": failing("a")})
    b = ScriptedBackend("b", script={"round_2_b": "B2 current view"})
    ref = ScriptedBackend("ref", default="Only b replied.\nCONSENSUS: NO")
    operator = ScriptedOperator(escalations=[EscalationChoice.SKIP])
    ctx = make_context(store, sample_prompts_config, [a, b], operator=operator, max_rounds=2, referee=ref)

    await RoundExecutor(ctx).run()

    referee_input = ref.prompt_for("referee_round_2")
    assert "A1 earlier view" not in referee_input
    assert "(a gave no reply in round 2.)" in referee_input
    assert "B2 current view" in referee_input


async def test_round_one_failures_escalate_after_the_join(store, sample_prompts_config):
    a = ScriptedBackend("a", script={"round_1_a": [failing("a"), "A recovered"]})
    b = ScriptedBackend("b")
    operator = ScriptedOperator(escalations=[EscalationChoice.RETRY])
    ctx = make_context(store, sample_prompts_config, [a, b], operator=operator, max_rounds=1)

    await RoundExecutor(ctx).run()

    assert store.read_response(1, AgentIdentity("a")) == "A recovered"
    assert operator.failures == []
    assert a.tags().count("round_1_a") == 2


async def test_abort_propagates_and_leaves_run_resumable(store, sample_prompts_config):
    a = ScriptedBackend("a", script={"round_2_a": failing("a")})
    b = ScriptedBackend("b")
    operator = ScriptedOperator(escalations=[EscalationChoice.ABORT])
    ctx = make_context(store, sample_prompts_config, [a, b], operator=operator, max_rounds=3)

    with pytest.raises(RunAborted):
        await RoundExecutor(ctx).run()

    state = _state(store)
    assert state["status"] == "running"
    assert state["current_round"] == 1
    assert not store.summary_path.exists()


async def test_self_debate_seats_share_one_backend(store, sample_prompts_config):
    claude = ScriptedBackend("claude")
    roster = [AgentIdentity("claude", 1), AgentIdentity("claude", 2)]
    ctx = make_context(store, sample_prompts_config, [claude], roster=roster, max_rounds=2)

    await RoundExecutor(ctx).run()

    assert sorted(t for t in claude.tags() if t.startswith("round_1")) == ["round_1_claude_1", "round_1_claude_2"]
    assert "<claude_1_response>" in claude.prompt_for("round_2_claude_2")
    assert (store.workdir / "CLAUDE_1.md").exists()
    assert (store.workdir / "CLAUDE_2.md").exists()


async def test_resume_continues_from_next_round(store, sample_prompts_config):
    first_a = ScriptedBackend("a", script={"round_2_a": "A2 before crash"})
    first_b = ScriptedBackend("b", script={"round_2_b": "B2 before crash", "round_3_b": failing("b")})
    operator = ScriptedOperator(escalations=[EscalationChoice.ABORT])
    ctx = make_context(store, sample_prompts_config, [first_a, first_b], operator=operator, max_rounds=3)
    with pytest.raises(RunAborted):
        await RoundExecutor(ctx).run()

    snapshot = load_resume_snapshot(store, store.load_state())
    assert snapshot.next_round == 3

    a = ScriptedBackend("a")
    b = ScriptedBackend("b")
    resumed = make_context(store, sample_prompts_config, [a, b], roster=snapshot.roster, max_rounds=5)
    outcome = await RoundExecutor(resumed).run(resume=snapshot)

    assert a.tags()[0] == "round_3_a"
    assert "B2 before crash" in a.prompt_for("round_3_a")
    assert outcome.rounds_completed == 5
    assert store.read_response(1, AgentIdentity("a")) is not None
    assert _state(store)["max_rounds"] == 5


async def test_resume_resolicits_missing_steering(store, sample_prompts_config):
    a = ScriptedBackend("a")
    b = ScriptedBackend("b")
    ctx = make_context(store, sample_prompts_config, [a, b], max_rounds=2)
    await RoundExecutor(ctx).run()
    state = store.load_state()
    state.current_round = 1
    state.max_rounds = 3
    store.save_state(state)

    snapshot = load_resume_snapshot(store, state)
    assert snapshot.steering_missing

    operator = ScriptedOperator(steering=["Consider latency", ""])
    a2 = ScriptedBackend("a")
    b2 = ScriptedBackend("b")
    resumed = make_context(
        store, sample_prompts_config, [a2, b2], roster=snapshot.roster, operator=operator, max_rounds=3, steering=True
    )
    await RoundExecutor(resumed).run(resume=snapshot)

    assert operator.steering_rounds[0] == 1
    assert "Consider latency" in a2.prompt_for("round_2_a")


async def test_resume_with_digit_suffixed_registry_name(store, sample_prompts_config):
    gpt = ScriptedBackend("gpt_4", script={"round_2_gpt_4": failing("gpt_4")})
    codex = ScriptedBackend("codex")
    operator = ScriptedOperator(escalations=[EscalationChoice.ABORT])
    ctx = make_context(store, sample_prompts_config, [gpt, codex], operator=operator, max_rounds=3)
    with pytest.raises(RunAborted):
        await RoundExecutor(ctx).run()

    snapshot = load_resume_snapshot(store, store.load_state())
    registry = AgentRegistry()
    gpt2 = ScriptedBackend("gpt_4")
    codex2 = ScriptedBackend("codex")
    registry.register_instance(gpt2)
    registry.register_instance(codex2)
    await resolve_roster([agent.base_type for agent in snapshot.roster], registry)

    resumed = make_context(store, sample_prompts_config, [gpt2, codex2], roster=snapshot.roster, max_rounds=3)
    outcome = await RoundExecutor(resumed).run(resume=snapshot)

    assert snapshot.roster == [AgentIdentity("gpt_4"), AgentIdentity("codex")]
    assert gpt2.tags()[0] == "round_2_gpt_4"
    assert outcome.rounds_completed == 3
    assert _state(store)["roster"] == [{"base": "gpt_4", "suffix": None}, {"base": "codex", "suffix": None}]
