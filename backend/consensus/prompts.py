"""Prompt templates for market resolution."""

from typing import Optional

RESOLUTION_SYSTEM_PROMPT = (
    "You are an impartial oracle resolving prediction markets. "
    "Answer only from verifiable facts. If the question is ambiguous, "
    "unresolvable, or the event has not happened yet, answer INVALID."
)

RESOLUTION_PROMPT = """Resolve the following prediction market.

MARKET QUESTION: "{question}"
{context_block}
Decide the outcome:
- YES: the event described by the question happened
- NO: the event did not happen
- INVALID: the question is ambiguous, unresolvable, or cannot be determined yet

Respond ONLY in JSON:
{{
    "outcome": "YES" or "NO" or "INVALID",
    "confidence": <0-100>,
    "reasoning": "1-2 sentence justification"
}}"""


def build_resolution_prompt(
    question: str,
    context: Optional[str] = None,
    price_context: Optional[str] = None,
) -> str:
    lines = []
    if context:
        lines.append(f"ADDITIONAL CONTEXT: {context}")
    if price_context:
        lines.append(f"PRICE DATA: {price_context}")
    context_block = ("\n".join(lines) + "\n") if lines else ""
    return RESOLUTION_PROMPT.format(question=question, context_block=context_block)
