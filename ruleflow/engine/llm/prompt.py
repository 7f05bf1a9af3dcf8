"""Prompt templates for LLM calls."""

CONDITION_SYSTEM_PROMPT = """You are an automation assistant. Your task is to decide whether an incoming trigger event is relevant to a user-defined automation rule.

You will receive:
1. The rule's topic condition, written in natural language by the user
2. The trigger payload

Decide whether the payload satisfies the topic condition, give a confidence score (0.0 to 1.0) and explain briefly.

Always respond in JSON format with the following structure:
{
  "matches": true/false,
  "confidence": 0.0-1.0,
  "reason": "Short explanation of your decision"
}

Important guidelines:
- Be conservative: only match when the payload clearly fits the condition
- Base your reasoning on concrete fields from the payload
- If the payload is insufficient to decide, set matches to false
"""

CONDITION_USER_TEMPLATE = """
## Topic Condition
{topic_condition}

## Trigger Payload
{payload}

Does this trigger satisfy the topic condition? Respond in JSON format.
"""

STEP_SYSTEM_PROMPT = """You are an automation assistant executing one step of a user's automation rule.
Follow the instruction using the provided context. Reply with the result only, no preamble."""

STEP_USER_TEMPLATE = """
## Instruction
{instruction}

## Context
{context}

## Results of previous steps
{previous_results}
"""


def build_condition_prompt(
    topic_condition: str,
    payload: str,
) -> tuple[str, str]:
    """Build system and user prompts for condition evaluation.

    Args:
        topic_condition: Natural language condition
        payload: Trigger payload as JSON string

    Returns:
        Tuple of (system_prompt, user_prompt)
    """
    user_prompt = CONDITION_USER_TEMPLATE.format(
        topic_condition=topic_condition,
        payload=payload,
    )
    return CONDITION_SYSTEM_PROMPT, user_prompt


def build_step_messages(
    instruction: str,
    context: str,
    previous_results: str,
    conversation_history: list[dict[str, str]] | None = None,
) -> list[dict[str, str]]:
    """Build chat messages for an instruction step.

    Conversation history from a manual invocation is replayed between the
    system prompt and the instruction.
    """
    messages = [{"role": "system", "content": STEP_SYSTEM_PROMPT}]
    for turn in conversation_history or []:
        if turn.get("role") in ("user", "assistant") and turn.get("content"):
            messages.append({"role": turn["role"], "content": turn["content"]})
    messages.append(
        {
            "role": "user",
            "content": STEP_USER_TEMPLATE.format(
                instruction=instruction,
                context=context or "No context.",
                previous_results=previous_results or "None.",
            ),
        }
    )
    return messages
