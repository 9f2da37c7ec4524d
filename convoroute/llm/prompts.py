"""
Prompt fragments for the primary generation call.
"""

from datetime import datetime

USER_REQUEST_TEMPLATE = """System data:
Date and time: {timestamp}
Participant: '{persona}'

Message:
{text}"""

PERSONALIZATION_BLOCK = """

---

Personalization

The user shared this about themselves. Take it into account where it is relevant and reasonable:

{personalization}"""


def format_user_request(persona: str, text: str, now: datetime) -> str:
    """Wrap a user message with the time it was sent and who sent it."""
    return USER_REQUEST_TEMPLATE.format(
        timestamp=now.strftime("%A, %d %B %Y, %H:%M:%S"),
        persona=persona,
        text=text,
    )


def personalization_block(personalization: str) -> str:
    return PERSONALIZATION_BLOCK.format(personalization=personalization)


LENGTH_GUIDELINES = {
    "very_brief": (
        "**Very brief response required** (1-2 sentences maximum):\n"
        "- Answer directly and concisely\n"
        "- One key fact or yes/no\n"
        "- No elaboration unless critical\n"
        "- Skip examples and details"
    ),
    "brief": (
        "**Brief response required** (3-5 sentences):\n"
        "- Short and focused explanation\n"
        "- Core information only\n"
        "- Minimal examples if needed\n"
        "- Skip tangential details"
    ),
    "medium": (
        "**Standard response** (balanced length):\n"
        "- Provide a complete, well-structured answer\n"
        "- Include relevant context and examples\n"
        "- Balance thoroughness with brevity\n"
        "- Natural conversational length"
    ),
    "detailed": (
        "**Detailed response required**:\n"
        "- Comprehensive explanation with context\n"
        "- Include multiple examples and perspectives\n"
        "- Cover edge cases and nuances\n"
        "- Thorough but organized presentation"
    ),
    "very_detailed": (
        "**Very detailed response required** (in-depth analysis):\n"
        "- Exhaustive coverage of the topic\n"
        "- Multiple examples, comparisons, and perspectives\n"
        "- Step-by-step breakdowns where applicable\n"
        "- All relevant details and edge cases"
    ),
}


def length_guideline(length: str) -> str:
    """System prompt block for a response length; empty for unknown lengths."""
    guideline = LENGTH_GUIDELINES.get(length)
    if guideline is None:
        return ""
    return f"\n\n### Response Length Guideline\n\n{guideline}"
