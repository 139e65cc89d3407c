"""Tests for PromptAssembler."""

import pytest

from avatar_engine.core.exceptions import ConfigurationError
from avatar_engine.domain.models.avatar import CounterpartProfile
from avatar_engine.domain.models.definitions import PromptTemplate
from avatar_engine.domain.models.memory import (
    FulfilledIntentRecord,
    MindStateStack,
    MindStateStackItem,
)
from avatar_engine.services.prompt_assembler import (
    HISTORY_HEADER,
    INTENTS_HEADER,
    KNOWLEDGE_HEADER,
    PromptAssembler,
    memory_long,
    memory_short,
    substitute,
)


@pytest.fixture
def assembler(catalog, clock):
    return PromptAssembler(catalog, clock=clock)


def stack_with(clock, *intents, seconds_ago=12):
    items = [
        MindStateStackItem(
            tag=name, intent=name, confidence=0.9, timestamp=clock()
        )
        for name in intents
    ]
    clock.advance(seconds_ago)
    return MindStateStack(session_id="s1", stack=items)


class TestTemplateSelection:
    """Flow step first, then avatar templates, then standard templates."""

    def test_avatar_template_highest_priority(self, assembler, avatar):
        template = assembler.select_template(avatar, "pricing_question")
        assert template.id == "pricing_high"

    def test_standard_template_for_other_intents(self, assembler, avatar):
        assert assembler.select_template(avatar, "greeting").id == "greeting"

    def test_flow_step_template(self, assembler, avatar):
        template = assembler.select_template(
            avatar, "email_provided", flow_step="meeting_confirmation"
        )
        assert template.id == "confirm_step"

    def test_flow_step_without_template_uses_intent(self, assembler, avatar):
        template = assembler.select_template(
            avatar, "arrange_meeting", flow_step="meeting_arrangement"
        )
        assert template.id == "arrange_meeting"

    def test_unmapped_flow_step_uses_intent(self, assembler, avatar):
        assert assembler.select_template(avatar, "start", flow_step="s1").id == "start"

    def test_missing_template_is_configuration_error(self, assembler, avatar):
        with pytest.raises(ConfigurationError, match="job_opening"):
            assembler.select_template(avatar, "job_opening")

    def test_custom_intent_template_takes_precedence(self, assembler, custom_avatar):
        assert assembler.select_template(custom_avatar, "greeting").id == "custom_greeting"


class TestBuild:
    """Variable substitution and context sections."""

    def test_prompts_substituted(self, assembler, avatar, clock):
        prompt = assembler.build(
            intent="pricing_question",
            user_message="how much is an audit",
            avatar=avatar,
            memory=stack_with(clock, "greeting"),
            counterpart=CounterpartProfile(name="Kowalski", industry="retail"),
        )

        assert prompt.template_id == "pricing_high"
        assert prompt.system_prompt == (
            "You are Alex from Northbridge.\n\nQuote prices for Northbridge in retail."
        )
        assert prompt.user_prompt.startswith("Question: how much is an audit")

    def test_default_prompt_prepended_for_custom_avatar(self, assembler, custom_avatar):
        prompt = assembler.build("greeting", "hello", custom_avatar)

        assert prompt.system_prompt == "You are Maya from Acme.\n\nCustom hello from Acme."
        assert prompt.user_prompt == "Visitor: hello"

    def test_context_sections_in_order(self, assembler, avatar, clock):
        memory = stack_with(clock, "a", "b", "c", "d")

        prompt = assembler.build(
            intent="general_questions",
            user_message="question",
            avatar=avatar,
            memory=memory,
            rag_text="Snippet one",
            chat_history_text="User: hi\nAvatar: hello",
        )

        user = prompt.user_prompt
        assert user.index(KNOWLEDGE_HEADER) < user.index(HISTORY_HEADER) < user.index(INTENTS_HEADER)
        assert "Snippet one" in user
        assert "Recent intents: b (09:30:00), c (09:30:00), d (09:30:00)" in user
        assert "a (" not in user

    def test_sections_omitted_when_empty(self, assembler, avatar):
        prompt = assembler.build("general_questions", "question", avatar)

        assert prompt.user_prompt == "question"

    def test_flow_context_values_available(self, assembler, avatar):
        memory = MindStateStack(
            session_id="s1", current_flow="redirect", current_flow_step="meeting_confirmation"
        )

        prompt = assembler.build(
            "email_provided",
            "jan@example.com",
            avatar,
            memory=memory,
            flow_context={"extracted_email": "jan@example.com"},
        )

        assert prompt.template_id == "confirm_step"
        assert "Confirm the invite goes to jan@example.com." in prompt.system_prompt

    def test_context_cannot_shadow_fixed_variables(self, assembler, avatar, clock):
        definitions = assembler.catalog.resolve(avatar)

        variables = assembler.build_variables(
            definitions,
            "greeting",
            "real message",
            None,
            session_context={"user_message": "spoofed", "campaign": "spring"},
        )

        assert variables["user_message"] == "real message"
        assert variables["campaign"] == "spring"
        assert variables["company.offerings"] == "audits, workshops"

    def test_missing_variables(self):
        template = PromptTemplate(
            id="t", intent="x", variables=["company.name", "discount_code", "empty"]
        )
        missing = PromptAssembler.missing_variables(
            template, {"company.name": "Acme", "empty": ""}
        )
        assert missing == ["discount_code", "empty"]


class TestHelpers:
    def test_memory_short(self, clock):
        assert memory_short(None, clock()) == "No conversation history"
        memory = stack_with(clock, "greeting")
        assert memory_short(memory, clock()) == "Last intent: greeting (12s ago)"

    def test_memory_long(self):
        assert memory_long(None) == "No long-term history"
        memory = MindStateStack(
            session_id="s1",
            stack=[MindStateStackItem(tag="a", intent="a", confidence=0.5)],
        )
        assert memory_long(memory) == "No fulfilled intents"

        memory.fulfilled_intents["greeting"] = FulfilledIntentRecord(fulfilled=True)
        memory.fulfilled_intents["pricing"] = FulfilledIntentRecord(fulfilled=False)
        assert memory_long(memory) == "Fulfilled intents: greeting"

    def test_substitute_leaves_unknown_placeholders(self):
        text = substitute(
            "Hi {{ name }}, see {{unknown}}. {{none}}", {"name": "Ola", "none": None}
        )
        assert text == "Hi Ola, see {{unknown}}. "
