"""Tests for intent classification prompts."""

from avatar_engine.domain.models.definitions import IntentDefinition
from avatar_engine.llm.prompts.classification import (
    MAX_EXAMPLES_PER_INTENT,
    get_classification_system_prompt,
    get_classification_user_prompt,
    parse_intent_name,
)


class TestSystemPrompt:
    def test_lists_intents_with_descriptions(self):
        prompt = get_classification_system_prompt(
            [
                IntentDefinition(name="greeting", description="Opening pleasantries"),
                IntentDefinition(name="goodbye"),
            ]
        )

        assert "- greeting: Opening pleasantries" in prompt
        assert "- goodbye\n" in prompt
        assert "Return ONLY the intent name" in prompt

    def test_examples_capped_per_intent(self):
        examples = [f"example {i}" for i in range(MAX_EXAMPLES_PER_INTENT + 2)]
        prompt = get_classification_system_prompt(
            [IntentDefinition(name="pricing", examples=examples)]
        )

        assert "## Examples:" in prompt
        assert prompt.count("Answer: pricing") == MAX_EXAMPLES_PER_INTENT

    def test_no_examples_section_without_examples(self):
        prompt = get_classification_system_prompt([IntentDefinition(name="greeting")])

        assert "## Examples:" not in prompt


class TestUserPrompt:
    def test_message_only(self):
        assert get_classification_user_prompt("Hi") == 'User message: "Hi"'

    def test_includes_recent_intents(self):
        prompt = get_classification_user_prompt("Hi", ["greeting", "pricing"])

        assert prompt.endswith("Recent conversation intents: greeting, pricing")


class TestParseIntentName:
    def test_strips_decoration(self):
        assert parse_intent_name("  `greeting`.  ") == "greeting"
        assert parse_intent_name('"arrange_meeting"') == "arrange_meeting"

    def test_period_outside_or_inside_quotes(self):
        assert parse_intent_name("`greeting`.") == "greeting"
        assert parse_intent_name('"greeting."') == "greeting"
        assert parse_intent_name("'pricing_question'.\n") == "pricing_question"

    def test_first_line_only(self):
        assert parse_intent_name("greeting\nBecause the user said hi") == "greeting"

    def test_empty(self):
        assert parse_intent_name("   ") == ""
