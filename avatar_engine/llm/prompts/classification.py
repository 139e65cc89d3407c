"""
Prompts for intent classification.

The classification call is short and near-deterministic: the system prompt
lists every active intent with its description and examples, the user
prompt carries the message plus the last few stack intents, and the model
answers with a single intent name.
"""

from typing import List, Optional, Sequence

from avatar_engine.domain.models.definitions import IntentDefinition

MAX_EXAMPLES_PER_INTENT = 3


def get_classification_system_prompt(intents: Sequence[IntentDefinition]) -> str:
    """
    Get system prompt for intent classification.

    Args:
        intents: Active intent definitions, in resolution order

    Returns:
        System prompt string
    """
    intent_lines = []
    example_lines = []
    for intent in intents:
        line = f"- {intent.name}"
        if intent.description:
            line += f": {intent.description}"
        intent_lines.append(line)

        for example in intent.examples[:MAX_EXAMPLES_PER_INTENT]:
            example_lines.append(f'User: "{example}"\nAnswer: {intent.name}')

    examples_section = ""
    if example_lines:
        examples_section = "\n\n## Examples:\n" + "\n\n".join(example_lines)

    return f"""Task: choose the single intent that best matches the user's message.

## Intents:
{chr(10).join(intent_lines)}{examples_section}

## Output:
Return ONLY the intent name, nothing else."""


def get_classification_user_prompt(
    user_message: str, recent_intents: Optional[List[str]] = None
) -> str:
    """
    Get user prompt for intent classification.

    Args:
        user_message: Raw user message
        recent_intents: Up to the last 3 stack intents, oldest first

    Returns:
        User prompt string
    """
    prompt = f'User message: "{user_message}"'
    if recent_intents:
        prompt += f"\n\nRecent conversation intents: {', '.join(recent_intents)}"
    return prompt


def parse_intent_name(content: str) -> str:
    """Normalize the raw model answer to a bare intent name.

    Keeps the first line only, then peels whitespace, trailing periods and
    surrounding quotes/backticks in any nesting order (`greeting`. and
    "greeting." both give greeting).
    """
    lines = content.strip().splitlines()
    name = lines[0] if lines else ""
    previous = None
    while name != previous:
        previous = name
        name = name.strip().rstrip(".").strip("`'\"")
    return name
