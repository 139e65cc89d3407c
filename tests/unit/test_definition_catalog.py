"""Tests for DefinitionCatalog."""

import pytest
import yaml

from avatar_engine.core.definition_loader import (
    DefinitionCatalog,
    merge_by_name,
    validate_flow_definition,
)
from avatar_engine.core.exceptions import ConfigurationError
from avatar_engine.domain.models.avatar import CustomAvatar, StandardAvatar
from avatar_engine.domain.models.definitions import (
    FlowDefinition,
    FlowStep,
    IntentDefinition,
)


class TestResolveStandard:
    def test_intents_in_file_order(self, catalog, avatar):
        definitions = catalog.resolve(avatar)

        names = [intent.name for intent in definitions.intents]
        assert names[:3] == ["email_provided", "email_promise", "greeting"]
        assert names[-1] == "user_comments"

    def test_knowledge_intents_and_persona(self, catalog, avatar):
        definitions = catalog.resolve(avatar)

        assert definitions.knowledge_intents == ["general_questions", "pricing_question"]
        assert definitions.persona.first_name == "Alex"
        assert definitions.persona.company.offerings == ["audits", "workshops"]

    def test_resolve_is_cached(self, catalog, avatar):
        assert catalog.resolve(avatar) is catalog.resolve(avatar)

    def test_unknown_avatar_type(self, catalog):
        with pytest.raises(ConfigurationError, match="Unknown avatar type"):
            catalog.resolve(StandardAvatar(avatar_type="pirate"))

    def test_default_system_prompt(self, catalog):
        assert catalog.default_system_prompt().id == "system_prompt_default"


class TestResolveCustom:
    def test_custom_intent_replaces_standard_in_place(self, catalog, custom_avatar):
        definitions = catalog.resolve(custom_avatar)

        names = [intent.name for intent in definitions.intents]
        assert names.index("greeting") == 2
        assert definitions.get_intent("greeting").repeatable is True
        assert names[-1] == "job_opening"

    def test_custom_flow_overrides_standard(self, catalog, custom_avatar):
        definitions = catalog.resolve(custom_avatar)

        assert definitions.get_flow("f1").name == "Custom scripted"
        assert definitions.get_flow("redirect") is not None

    def test_custom_prompt_pair_becomes_template(self, catalog, custom_avatar):
        definitions = catalog.resolve(custom_avatar)

        template = definitions.templates[0]
        assert template.id == "custom_greeting"
        assert template.user_prompt_template == "Visitor: {{user_message}}"

    def test_custom_persona_overlays_type_persona(self, catalog, custom_avatar):
        persona = catalog.resolve(custom_avatar).persona

        assert persona.first_name == "Maya"
        assert persona.company.name == "Acme"
        assert persona.tone == "warm"

    def test_unknown_custom_avatar_falls_back_to_type(self, catalog):
        definitions = catalog.resolve(CustomAvatar(avatar_id="ghost", avatar_type="networker"))

        assert definitions.avatar_key == "custom:ghost"
        assert definitions.get_flow("f1").name == "Scripted"

    def test_standard_set_unchanged_by_custom(self, catalog, avatar, custom_avatar):
        catalog.resolve(custom_avatar)

        assert catalog.resolve(avatar).get_intent("job_opening") is None


class TestReload:
    def test_reload_single_avatar(self, catalog, config_dir, avatar, custom_avatar):
        custom = catalog.resolve(custom_avatar)
        catalog.resolve(avatar)
        path = config_dir / "avatars" / "networker" / "persona.yaml"
        path.write_text(yaml.safe_dump({"first_name": "Jordan"}))

        catalog.reload(avatar)

        assert catalog.resolve(avatar).persona.first_name == "Jordan"
        assert catalog.resolve(custom_avatar) is custom

    def test_reload_all(self, catalog, config_dir, avatar):
        catalog.resolve(avatar)
        catalog.load_prompt_templates()
        path = config_dir / "prompts" / "templates.yaml"
        path.write_text(yaml.safe_dump({"templates": []}))

        catalog.reload()

        assert catalog.load_prompt_templates() == []
        assert catalog.default_system_prompt() is None


class TestValidation:
    def test_invalid_yaml(self, tmp_path):
        avatar_dir = tmp_path / "avatars" / "broken"
        avatar_dir.mkdir(parents=True)
        (avatar_dir / "intents.yaml").write_text("intents: [unclosed")

        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            DefinitionCatalog(tmp_path).resolve(StandardAvatar(avatar_type="broken"))

    def test_invalid_intent_fields(self, tmp_path):
        avatar_dir = tmp_path / "avatars" / "broken"
        avatar_dir.mkdir(parents=True)
        (avatar_dir / "intents.yaml").write_text(
            yaml.safe_dump({"intents": [{"name": "x", "confidence_threshold": 2}]})
        )

        with pytest.raises(ConfigurationError, match="Invalid intents"):
            DefinitionCatalog(tmp_path).resolve(StandardAvatar(avatar_type="broken"))

    def test_dangling_successor(self):
        flow = FlowDefinition(id="f", steps=[FlowStep(id="a", next_steps=["b"])])
        with pytest.raises(ConfigurationError, match="unknown step 'b'"):
            validate_flow_definition(flow)

    def test_unknown_success_criteria(self):
        flow = FlowDefinition(
            id="f",
            steps=[FlowStep(id="a", next_steps=["completed"])],
            success_criteria=["z"],
        )
        with pytest.raises(ConfigurationError, match="success criteria"):
            validate_flow_definition(flow)

    def test_empty_flow(self):
        with pytest.raises(ConfigurationError, match="no steps"):
            validate_flow_definition(FlowDefinition(id="f"))


def test_merge_by_name():
    standard = [IntentDefinition(name="a"), IntentDefinition(name="b")]
    custom = [IntentDefinition(name="c"), IntentDefinition(name="a", priority=3)]

    merged = merge_by_name(standard, custom, "name")

    assert [i.name for i in merged] == ["a", "b", "c"]
    assert merged[0].priority == 3
