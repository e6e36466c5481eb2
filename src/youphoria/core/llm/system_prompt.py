"""Assistant identity and chat prompt assembly."""

from __future__ import annotations

from typing import Sequence

from youphoria.core.storage.models import Message

ASSISTANT_NAME = "You-i"

WELLNESS_SYSTEM_PROMPT = f"""\
You are {ASSISTANT_NAME}, the wellness assistant inside the Youphoria app. You help \
people understand their own health data and offer practical, personalized wellness \
guidance.

## How you talk

- Conversational, warm and encouraging. Plain language; define any technical term.
- Ground answers in the user's data when it is provided. Reference specific values \
and dates. Never invent data you were not given.
- When data is missing, say what is missing and ask a clarifying question.
- End with at least one concrete, realistic next step when it fits.

## Units

- Show weight in pounds (lbs) first; kilograms may follow in parentheses.
- Distances in miles, temperatures in Fahrenheit, glucose and cholesterol in mg/dL.

## Boundaries

- You are not a physician and do not diagnose conditions.
- You do not recommend starting, stopping or changing medications.
- Lab values are directional signals, not diagnoses.
- Encourage consulting a healthcare professional for medical decisions.
"""

CONTEXT_HEADER = "=== USER HEALTH DATA CONTEXT ==="
CONTEXT_FOOTER = "=== END HEALTH DATA ==="


def build_chat_prompt(
    health_context: str,
    history: Sequence[Message],
    user_message: str,
) -> str:
    """Assemble the user turn: health data block, prior turns, new message.

    ``history`` must not include ``user_message`` itself.
    """
    parts: list[str] = []

    if health_context:
        parts.append(
            f"{CONTEXT_HEADER}\n{health_context}\n{CONTEXT_FOOTER}\n\n"
            "Use the health data above for personalized, data-driven answers. "
            "Reference specific metrics and dates when relevant."
        )

    if history:
        lines = ["Previous conversation:"]
        for msg in history:
            speaker = "User" if msg.role == "user" else ASSISTANT_NAME
            lines.append(f"{speaker}: {msg.content}")
        parts.append("\n".join(lines))

    parts.append(f"User: {user_message}\n\n{ASSISTANT_NAME}:")
    return "\n\n".join(parts)
