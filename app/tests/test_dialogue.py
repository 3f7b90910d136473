import pytest

from mindfusion.config import FusionPolicy
from mindfusion.dialogue import (
    NO_KNOWLEDGE_CONTEXT,
    STAGE_DIRECTIVES,
    build_system_prompt,
    build_turn_messages,
    classify_stage,
    format_knowledge_context,
)
from mindfusion.schemas import ChatMessage, Stage


@pytest.mark.parametrize(
    ("message_count", "stage"),
    [
        (0, Stage.OPENING),
        (1, Stage.EXPLORATION),
        (5, Stage.EXPLORATION),
        (6, Stage.DEEP_DIVE),
        (11, Stage.DEEP_DIVE),
        (12, Stage.SUMMARY),
        (40, Stage.SUMMARY),
    ],
)
def test_stage_boundaries(message_count, stage):
    state = classify_stage(message_count)

    assert state.stage == stage
    assert state.message_count == message_count
    assert state.directive == STAGE_DIRECTIVES[stage]


def test_stage_boundaries_follow_policy():
    policy = FusionPolicy(deep_dive_stage_from=2, summary_stage_from=4)

    assert classify_stage(1, policy).stage == Stage.EXPLORATION
    assert classify_stage(2, policy).stage == Stage.DEEP_DIVE
    assert classify_stage(4, policy).stage == Stage.SUMMARY


def test_negative_message_count_rejected():
    with pytest.raises(ValueError):
        classify_stage(-1)


def test_knowledge_context_falls_back_when_empty():
    assert format_knowledge_context([]) == NO_KNOWLEDGE_CONTEXT
    assert format_knowledge_context([{"title": "blank", "content": "  "}]) == NO_KNOWLEDGE_CONTEXT


def test_system_prompt_carries_stage_directive_and_knowledge():
    state = classify_stage(7)
    prompt = build_system_prompt(
        state,
        assessment_type="PHQ-9",
        knowledge_items=[{"title": "Sleep", "content": "Ask about sleep onset and early waking."}],
    )

    assert "PHQ-9" in prompt
    assert "[Sleep]" in prompt
    assert "early waking" in prompt
    assert state.directive in prompt
    assert "[Current round] 3.5" in prompt
    assert "80 words" in prompt


def test_turn_messages_wrap_history_between_system_and_query():
    history = [
        ChatMessage(role="assistant", content="How have you been?"),
        ChatMessage(role="user", content="Tired, mostly."),
    ]

    messages = build_turn_messages("SYSTEM", history, "I can't sleep.")

    assert messages[0] == {"role": "system", "content": "SYSTEM"}
    assert messages[1:3] == [
        {"role": "assistant", "content": "How have you been?"},
        {"role": "user", "content": "Tired, mostly."},
    ]
    assert messages[-1] == {"role": "user", "content": "I can't sleep."}
