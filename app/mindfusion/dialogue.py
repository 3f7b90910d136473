"""Stage control and prompt shaping for the progressive screening dialogue."""

from __future__ import annotations

from typing import Any

from mindfusion.config import FusionPolicy
from mindfusion.schemas import ChatMessage, ConversationState, Stage

STAGE_DIRECTIVES: dict[Stage, str] = {
    Stage.OPENING: (
        "Opening: gently introduce the purpose of the assessment and ask how the user "
        "has been feeling overall recently."
    ),
    Stage.EXPLORATION: (
        "Exploration: based on the previous answer, pick 1-2 core dimensions and probe them."
    ),
    Stage.DEEP_DIVE: (
        "Deep dive: focus on the difficulty the user raised; explore its concrete "
        "manifestations and impact."
    ),
    Stage.SUMMARY: (
        "Summary: synthesize what has been shared, offer a preliminary reflection, and ask "
        "whether anything is missing."
    ),
}

CONVERSATION_STRATEGY = [
    "Proactive questioning: follow the dimensions of the assessment scale and go deeper step by step.",
    "Progressive exploration: start with light topics before moving to sensitive ones.",
    "Empathic responses: acknowledge the user's feelings with understanding and care.",
    "Insight: notice emotional signals and risk factors in what the user says.",
    "Multi-dimensional coverage: mood, sleep, interest, energy, self-worth and concentration.",
]

NO_KNOWLEDGE_CONTEXT = "No relevant knowledge base content."
MAX_REPLY_WORDS = 80


def classify_stage(message_count: int, policy: FusionPolicy | None = None) -> ConversationState:
    if message_count < 0:
        raise ValueError("message_count must be >= 0")
    policy = policy or FusionPolicy()

    if message_count == 0:
        stage = Stage.OPENING
    elif message_count < policy.deep_dive_stage_from:
        stage = Stage.EXPLORATION
    elif message_count < policy.summary_stage_from:
        stage = Stage.DEEP_DIVE
    else:
        stage = Stage.SUMMARY

    return ConversationState(
        message_count=message_count,
        stage=stage,
        directive=STAGE_DIRECTIVES[stage],
    )


def format_knowledge_context(items: list[dict[str, Any]]) -> str:
    blocks = []
    for item in items:
        title = str(item.get("title") or "").strip()
        content = str(item.get("content") or "").strip()
        if not content:
            continue
        blocks.append(f"[{title}]\n{content}" if title else content)
    return "\n\n".join(blocks) if blocks else NO_KNOWLEDGE_CONTEXT


def build_system_prompt(
    state: ConversationState,
    *,
    assessment_type: str,
    knowledge_items: list[dict[str, Any]],
) -> str:
    strategy = "\n".join(f"{i}. {line}" for i, line in enumerate(CONVERSATION_STRATEGY, start=1))
    # Rounds count asker+respondent pairs.
    current_round = state.message_count / 2
    return (
        "You are a professional counselor conducting a depression screening conversation.\n\n"
        f"[Assessment scale] {assessment_type}\n\n"
        f"[Knowledge base reference]\n{format_knowledge_context(knowledge_items)}\n\n"
        f"[Conversation strategy]\n{strategy}\n\n"
        f"[Current round] {current_round:g}\n\n"
        f"[Next step]\n{state.directive}\n\n"
        "Continue the conversation in a warm, professional way. "
        f"Keep each reply under {MAX_REPLY_WORDS} words."
    )


def build_turn_messages(
    system_prompt: str,
    history: list[ChatMessage],
    query: str,
) -> list[dict[str, str]]:
    return [
        {"role": "system", "content": system_prompt},
        *(message.model_dump() for message in history),
        {"role": "user", "content": query},
    ]
