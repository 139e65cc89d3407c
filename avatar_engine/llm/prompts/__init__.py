# noqa
from avatar_engine.llm.prompts.classification import (
    get_classification_system_prompt,
    get_classification_user_prompt,
    parse_intent_name,
)

__all__ = [
    "get_classification_system_prompt",
    "get_classification_user_prompt",
    "parse_intent_name",
]
