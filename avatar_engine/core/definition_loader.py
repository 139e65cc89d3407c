"""Definition catalog for avatar YAML configuration.

Layout under ``settings.config_dir``::

    avatars/<avatar_type>/intents.yaml     intents + knowledge_intents
    avatars/<avatar_type>/flows.yaml       flows
    avatars/<avatar_type>/templates.yaml   avatar-type prompt templates
    avatars/<avatar_type>/persona.yaml     persona defaults
    custom_avatars/<avatar_id>/intents.yaml
    custom_avatars/<avatar_id>/flows.yaml
    custom_avatars/<avatar_id>/persona.yaml  (optional)
    prompts/templates.yaml                 standard templates + system_prompt_default

Resolved definition sets are cached per avatar key. Reload is explicit.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, TypeVar

import pydantic
import structlog
import yaml

from avatar_engine.core.exceptions import ConfigurationError
from avatar_engine.domain.models.avatar import (
    AvatarPersona,
    AvatarSelector,
    CustomAvatar,
)
from avatar_engine.domain.models.definitions import (
    COMPLETED_STEP,
    FlowDefinition,
    IntentDefinition,
    PromptTemplate,
)

log = structlog.get_logger(__name__)

DEFAULT_SYSTEM_PROMPT_ID = "system_prompt_default"

_Named = TypeVar("_Named", IntentDefinition, FlowDefinition)


@dataclass
class AvatarDefinitions:
    """Concrete, ordered definition set for one avatar."""

    avatar_key: str
    avatar_type: str
    intents: List[IntentDefinition] = field(default_factory=list)
    flows: List[FlowDefinition] = field(default_factory=list)
    templates: List[PromptTemplate] = field(default_factory=list)
    persona: AvatarPersona = field(default_factory=AvatarPersona)
    knowledge_intents: List[str] = field(default_factory=list)

    def get_intent(self, name: str) -> Optional[IntentDefinition]:
        return next((i for i in self.intents if i.name == name), None)

    def get_flow(self, flow_id: str) -> Optional[FlowDefinition]:
        return next((f for f in self.flows if f.id == flow_id), None)


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Expected a mapping at top level of {path}")
    return data


def _parse_list(path: Path, key: str, model: type) -> List[Any]:
    if not path.exists():
        return []
    items = _read_yaml(path).get(key) or []
    try:
        return [model(**item) for item in items]
    except (pydantic.ValidationError, TypeError) as e:
        raise ConfigurationError(f"Invalid {key} in {path}: {e}") from e


def validate_flow_definition(flow: FlowDefinition) -> None:
    """Check that every step reference in ``flow`` resolves.

    Raises:
        ConfigurationError: On an empty flow, a dangling successor or
            an unknown success-criteria step.
    """
    if not flow.steps:
        raise ConfigurationError(f"Flow '{flow.id}' has no steps")

    step_ids = {step.id for step in flow.steps}
    for step in flow.steps:
        for successor in step.next_steps:
            if successor != COMPLETED_STEP and successor not in step_ids:
                raise ConfigurationError(
                    f"Flow '{flow.id}' step '{step.id}' points at unknown step '{successor}'"
                )
    for step_id in flow.success_criteria:
        if step_id not in step_ids:
            raise ConfigurationError(
                f"Flow '{flow.id}' success criteria references unknown step '{step_id}'"
            )


def merge_by_name(standard: List[_Named], custom: List[_Named], key: str) -> List[_Named]:
    """Overlay ``custom`` on ``standard``.

    A custom entry replaces the standard entry with the same key in place;
    new custom entries are appended in their own order.
    """
    custom_by_key = {getattr(item, key): item for item in custom}
    merged = [custom_by_key.pop(getattr(item, key), item) for item in standard]
    merged.extend(item for item in custom if getattr(item, key) in custom_by_key)
    return merged


class DefinitionCatalog:
    """Loads and caches intent, flow and prompt definitions per avatar."""

    def __init__(self, config_dir: Path):
        self.config_dir = Path(config_dir)
        self._cache: Dict[str, AvatarDefinitions] = {}
        self._standard_templates: Optional[List[PromptTemplate]] = None

    # ------------------------------------------------------------------
    # Raw loaders
    # ------------------------------------------------------------------

    def _avatar_dir(self, avatar_type: str) -> Path:
        path = self.config_dir / "avatars" / avatar_type
        if not path.is_dir():
            raise ConfigurationError(f"Unknown avatar type '{avatar_type}': {path} not found")
        return path

    def load_intent_definitions(self, avatar_type: str) -> List[IntentDefinition]:
        return _parse_list(
            self._avatar_dir(avatar_type) / "intents.yaml", "intents", IntentDefinition
        )

    def load_flow_definitions(self, avatar_type: str) -> List[FlowDefinition]:
        flows = _parse_list(
            self._avatar_dir(avatar_type) / "flows.yaml", "flows", FlowDefinition
        )
        for flow in flows:
            validate_flow_definition(flow)
        return flows

    def load_avatar_templates(self, avatar_type: str) -> List[PromptTemplate]:
        return _parse_list(
            self._avatar_dir(avatar_type) / "templates.yaml", "templates", PromptTemplate
        )

    def load_prompt_templates(self) -> List[PromptTemplate]:
        """Standard prompt templates shared by every avatar type."""
        if self._standard_templates is None:
            self._standard_templates = _parse_list(
                self.config_dir / "prompts" / "templates.yaml", "templates", PromptTemplate
            )
            log.info("prompt_templates_loaded", count=len(self._standard_templates))
        return self._standard_templates

    def default_system_prompt(self) -> Optional[PromptTemplate]:
        return next(
            (t for t in self.load_prompt_templates() if t.id == DEFAULT_SYSTEM_PROMPT_ID),
            None,
        )

    def load_custom_definitions(
        self, avatar_id: str
    ) -> tuple[List[IntentDefinition], List[FlowDefinition]]:
        """Avatar-scoped intents and flows. Unknown ids yield empty sets."""
        custom_dir = self.config_dir / "custom_avatars" / avatar_id
        if not custom_dir.is_dir():
            log.warning("custom_avatar_not_found", avatar_id=avatar_id)
            return [], []

        intents = _parse_list(custom_dir / "intents.yaml", "intents", IntentDefinition)
        flows = _parse_list(custom_dir / "flows.yaml", "flows", FlowDefinition)
        for flow in flows:
            validate_flow_definition(flow)
        return intents, flows

    def _load_persona(self, path: Path, base: Optional[AvatarPersona] = None) -> AvatarPersona:
        if not path.exists():
            return base or AvatarPersona()
        data = _read_yaml(path)
        if base is not None:
            data = {**base.model_dump(), **data}
        try:
            return AvatarPersona(**data)
        except pydantic.ValidationError as e:
            raise ConfigurationError(f"Invalid persona in {path}: {e}") from e

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(self, avatar: AvatarSelector) -> AvatarDefinitions:
        """Resolve ``avatar`` to its concrete, ordered definition set."""
        if avatar.key in self._cache:
            return self._cache[avatar.key]

        avatar_dir = self._avatar_dir(avatar.avatar_type)
        intents = self.load_intent_definitions(avatar.avatar_type)
        flows = self.load_flow_definitions(avatar.avatar_type)
        templates = self.load_avatar_templates(avatar.avatar_type)
        persona = self._load_persona(avatar_dir / "persona.yaml")
        intents_path = avatar_dir / "intents.yaml"
        intents_doc = _read_yaml(intents_path) if intents_path.exists() else {}
        knowledge_intents = list(intents_doc.get("knowledge_intents") or [])

        if isinstance(avatar, CustomAvatar):
            custom_intents, custom_flows = self.load_custom_definitions(avatar.avatar_id)
            intents = merge_by_name(intents, custom_intents, "name")
            flows = merge_by_name(flows, custom_flows, "id")
            # Intents carrying their own prompt pair take precedence over type templates
            custom_templates = [
                PromptTemplate(
                    id=f"custom_{intent.name}",
                    name=intent.name,
                    intent=intent.name,
                    system_prompt=intent.system_prompt_template or "",
                    user_prompt_template=intent.user_prompt_template or "{{user_message}}",
                )
                for intent in custom_intents
                if intent.system_prompt_template or intent.user_prompt_template
            ]
            templates = custom_templates + templates
            persona = self._load_persona(
                self.config_dir / "custom_avatars" / avatar.avatar_id / "persona.yaml",
                base=persona,
            )

        known_flows = {flow.id for flow in flows}
        for intent in intents:
            if intent.requires_flow and intent.flow_name and intent.flow_name not in known_flows:
                log.warning(
                    "intent_references_unknown_flow",
                    avatar=avatar.key,
                    intent=intent.name,
                    flow_name=intent.flow_name,
                )

        definitions = AvatarDefinitions(
            avatar_key=avatar.key,
            avatar_type=avatar.avatar_type,
            intents=intents,
            flows=flows,
            templates=templates,
            persona=persona,
            knowledge_intents=knowledge_intents,
        )
        self._cache[avatar.key] = definitions
        log.info(
            "avatar_definitions_loaded",
            avatar=avatar.key,
            intents=len(intents),
            flows=len(flows),
            templates=len(templates),
        )
        return definitions

    def reload(self, avatar: Optional[AvatarSelector] = None) -> None:
        """Drop cached definitions so the next resolve reads YAML again.

        Args:
            avatar: Only drop this avatar's set; drop everything when None.
        """
        if avatar is None:
            self._cache.clear()
            self._standard_templates = None
        else:
            self._cache.pop(avatar.key, None)
        log.info("avatar_definitions_reloaded", avatar=avatar.key if avatar else "all")
