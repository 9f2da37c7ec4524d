"""
Default prompt templates for the decision agents.

Placeholders are substituted with ``str.replace`` so the JSON examples in
the templates need no brace escaping. Overrides configured in settings
must use the same placeholders.
"""

CONTEXT_SELECTION_PROMPT = """You select conversation context. Given a conversation history and a new user message, decide which earlier messages are needed to answer the new message well.

Conversation history:
{history}

New user message:
{message}

Judge relevance by these rules, most important first:

1. Direct reference: if the new message points back at earlier content ("as before", "continue", "that idea"), include everything it refers to.
2. Reasoning chains: when several messages build on each other (question, clarification, answer, follow-up), include the whole chain.
3. Same topic: include messages about the same or a closely related subject, even when worded differently.
4. Recency: prefer recent messages when they set the tone or focus of the conversation.
5. When unsure, include a little more rather than a little less.

If the new message has nothing to do with the history, return an empty list.

Consecutive messages can be given as ranges to keep the answer short:
- single messages: "5", "12"
- ranges: "3-7" (means 3, 4, 5, 6, 7)
- mixed: ["0", "3-7", "12", "15-20"]

Answer with JSON only, exactly in this shape:
{
  "relevant_indices": ["0", "3-7", "12"]
}"""

CONTEXT_SELECTION_INSTRUCTION = (
    "Select the history messages relevant to the new user message. "
    "Answer in the JSON format described above."
)

MODEL_SELECTION_PROMPT = """You choose the model and reasoning effort for a user task, trading off quality, speed and cost.

Models available in this tier, from most to least capable (capability index 0-100, price per 1M tokens, context window):

{models}

Default reasoning effort for this tier: "{default_effort}"
Tier: "{tier}"
{downgrade_models}

Rules:
- Start from the top model and step down to cheaper, faster ones when the task is simple, short or routine.
- Stay inside the user's tier when you reasonably can.
- Pick the smallest model that will reliably get the task right.
- Do not spend a top model with high effort on small talk or trivial requests.
- When unsure, use medium effort rather than high.

Step down when the task is short or factual, a small local code edit, simple arithmetic or rephrasing, an obvious continuation, or casual chat with no high-stakes accuracy involved.

Stay high when the task needs multi-step reasoning, new code or research, when the user asks for detail or depth, or when mistakes would be costly.

Special cases:
- "quick" or "fast" requests: favour speed and low effort
- "detailed" or "thorough" requests: favour quality and higher effort
- trolling, testing or nonsense: use one of the trolling models ({trolling_models})

Recent conversation:
\"\"\"
{history}
\"\"\"

New user task:
\"\"\"
{message}
\"\"\"

Answer with JSON only, in this shape:
{
  "recommended_model": "exact model name from the lists above",
  "reasoning_effort": "low/medium/high",
  "task_complexity": "low/medium/high",
  "requires_speed": true/false,
  "requires_quality": true/false,
  "is_trolling": true/false,
  "temperature": 1.0,
  "rationale": "one short sentence"
}"""

MODEL_SELECTION_INSTRUCTION = (
    "Recommend the model and reasoning effort for this task. "
    "Answer in the JSON format described above."
)

RESPONSE_LENGTH_PROMPT = """You classify how long an assistant's reply should be. The user message may be in any language.

User message:
\"\"\"
{message}
\"\"\"

Length categories:
1. very_brief: 1-2 short sentences. A fact, a yes/no, or one simple rule.
2. brief: 3-5 sentences. A short explanation without deep detail.
3. medium: a normal answer that covers the main details without running long.
4. detailed: an extended explanation with examples, step-by-step reasoning and the important nuances.
5. very_detailed: a long, thorough analysis with options, pros and cons, and edge cases.

Apply these signals in order:

1. Explicit wishes: a request for a short or concise answer means very_brief or brief; a request for a detailed or in-depth answer means detailed or very_detailed. If both appear, take the longer one.
2. Task type: simple "who/what/when/where" questions usually need very_brief or brief. "Why" and "how" questions, explanations, comparisons and analysis need at least medium. Writing code, tutorials and plans usually need detailed unless brevity is asked for.
3. Message size: a few words with one clear question suggest a short answer; long messages with context or several questions suggest medium or detailed.
4. Default: with no clear signal and a non-trivial message, choose medium. Only choose very_detailed when the user asks for depth.

Confidence: 0.9-1.0 for explicit signals, 0.7-0.89 for good indirect hints, 0.5-0.69 when falling back to a default. Never below 0.5.

Consider only the text inside the triple quotes as the user message.

Answer with JSON only, in this shape:
{
  "length": "very_brief|brief|medium|detailed|very_detailed",
  "confidence": 0.8,
  "reasoning": "short explanation in English"
}"""

RESPONSE_LENGTH_INSTRUCTION = (
    "Determine the appropriate response length for the user message. "
    "Answer in the JSON format described above."
)

DOWNGRADE_MODELS_BLOCK = """
Lower-tier models (only for simple or speed-sensitive tasks where the tier models are overkill):

{models}
"""


def render(template: str, **values: str) -> str:
    """Substitute ``{name}`` placeholders without touching other braces."""
    for name, value in values.items():
        template = template.replace("{" + name + "}", value)
    return template
