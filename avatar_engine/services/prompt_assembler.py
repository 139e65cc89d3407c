"""
Prompt assembly service.

Selects a PromptTemplate for the resolved intent / flow step and
substitutes ``{{placeholder}}`` variables to produce the system prompt and
user prompt handed to the generation call.

Template selection order:
    1. Current flow step, through FLOW_STEP_TEMPLATES
    2. Avatar templates (custom-intent templates, then avatar-type templates)
    3. Standard templates
No match is a ConfigurationError.

The user prompt is followed by, in order: knowledge-base text, chat
history and the last three stack intents. The default system prompt
(``system_prompt_default``) is prepended to every system prompt.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

import structlog

from avatar_engine.core.clock import Clock, utc_now
from avatar_engine.core.definition_loader import AvatarDefinitions, DefinitionCatalog
from avatar_engine.core.exceptions import ConfigurationError
from avatar_engine.domain.models.avatar import AvatarSelector, CounterpartProfile
from avatar_engine.domain.models.definitions import PromptTemplate
from avatar_engine.domain.models.memory import MindStateStack

log = structlog.get_logger(__name__)

# Flow steps that have a dedicated template, keyed by step id -> template intent
FLOW_STEP_TEMPLATES: Dict[str, str] = {
    "meeting_arrangement": "meeting_arrangement",
    "meeting_confirmation": "meeting_confirmation",
    "express_interest": "express_interest",
    "ask_about_offer": "ask_about_offer",
    "evaluate_fit": "evaluate_fit",
    "discuss_terms": "discuss_terms",
    "purchase_decision": "purchase_decision",
}

KNOWLEDGE_HEADER = "### KNOWLEDGE BASE CONTEXT ###"
HISTORY_HEADER = "### CONVERSATION HISTORY ###"
INTENTS_HEADER = "### RECENT INTENTS ###"

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([\w.]+)\s*\}\}")


@dataclass
class AssembledPrompt:
    """Output of PromptAssembler.build()."""

    system_prompt: str
    user_prompt: str
    template_id: str


def memory_short(memory: Optional[MindStateStack], now) -> str:
    """Most recent intent and its age."""
    if memory is None or memory.top is None:
        return "No conversation history"
    age = int((now - memory.top.timestamp).total_seconds())
    return f"Last intent: {memory.top.intent} ({age}s ago)"


def memory_long(memory: Optional[MindStateStack]) -> str:
    """Intents already fulfilled in this session."""
    if memory is None or not memory.stack:
        return "No long-term history"
    names = memory.fulfilled_intent_names()
    if not names:
        return "No fulfilled intents"
    return f"Fulfilled intents: {', '.join(names)}"


def substitute(text: str, variables: Mapping[str, Any]) -> str:
    """Replace known ``{{name}}`` placeholders; unknown ones are left in place."""

    def _replace(match: re.Match) -> str:
        key = match.group(1)
        if key not in variables:
            return match.group(0)
        value = variables[key]
        return "" if value is None else str(value)

    return PLACEHOLDER_PATTERN.sub(_replace, text)


class PromptAssembler:
    """Builds system/user prompts from templates and session state."""

    def __init__(
        self,
        catalog: DefinitionCatalog,
        clock: Clock = utc_now,
        counterpart: Optional[CounterpartProfile] = None,
    ):
        self.catalog = catalog
        self.clock = clock
        self.counterpart = counterpart or CounterpartProfile()

    # ------------------------------------------------------------------
    # Template selection
    # ------------------------------------------------------------------

    def _find(
        self, definitions: AvatarDefinitions, intent: str
    ) -> Optional[PromptTemplate]:
        for source in (definitions.templates, self.catalog.load_prompt_templates()):
            matches = [t for t in source if t.intent == intent]
            if matches:
                return max(matches, key=lambda t: t.priority)
        return None

    def select_template(
        self,
        avatar: AvatarSelector,
        intent: str,
        flow_step: Optional[str] = None,
    ) -> PromptTemplate:
        """
        Resolve the template for this turn.

        Raises:
            ConfigurationError: If neither the flow step nor the intent has a template
        """
        definitions = self.catalog.resolve(avatar)

        if flow_step and flow_step in FLOW_STEP_TEMPLATES:
            template = self._find(definitions, FLOW_STEP_TEMPLATES[flow_step])
            if template is not None:
                return template

        template = self._find(definitions, intent)
        if template is None:
            raise ConfigurationError(
                f"No template found for intent '{intent}' or flow step '{flow_step}'"
            )
        return template

    # ------------------------------------------------------------------
    # Variables
    # ------------------------------------------------------------------

    def build_variables(
        self,
        definitions: AvatarDefinitions,
        intent: str,
        user_message: str,
        memory: Optional[MindStateStack],
        counterpart: Optional[CounterpartProfile] = None,
        session_context: Optional[Mapping[str, Any]] = None,
        flow_context: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        persona = definitions.persona
        company = persona.company
        counterpart = counterpart or self.counterpart

        variables: Dict[str, Any] = {
            "user_message": user_message,
            "current_intent": intent,
            "current_flow": memory.current_flow if memory else None,
            "current_flow_step": memory.current_flow_step if memory else None,
            "avatar.first_name": persona.first_name,
            "avatar.last_name": persona.last_name,
            "avatar.tone": persona.tone,
            "company.name": company.name,
            "company.industry": company.industry,
            "company.mission": company.mission,
            "company.specializations": ", ".join(company.specializations),
            "company.offerings": ", ".join(company.offerings),
            "suggested_topics": ", ".join(persona.suggested_topics),
            "counterpart.name": counterpart.name,
            "counterpart.industry": counterpart.industry,
            "counterpart.needs": counterpart.needs,
            "counterpart.strategic_goals": counterpart.strategic_goals or "",
            "memory_short": memory_short(memory, self.clock()),
            "memory_long": memory_long(memory),
        }
        # Context maps may supply extra keys but never shadow the fixed vocabulary
        for extra in (session_context, flow_context):
            for key, value in (extra or {}).items():
                variables.setdefault(key, value)
        return variables

    @staticmethod
    def missing_variables(
        template: PromptTemplate, variables: Mapping[str, Any]
    ) -> List[str]:
        """Declared template variables that have no value for this turn."""
        return [
            name
            for name in template.variables
            if variables.get(name) in (None, "")
        ]

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------

    def _append_context(
        self,
        prompt: str,
        memory: Optional[MindStateStack],
        rag_text: Optional[str],
        chat_history_text: Optional[str],
    ) -> str:
        if rag_text:
            prompt += f"\n\n{KNOWLEDGE_HEADER}\n{rag_text}"
        if chat_history_text:
            prompt += f"\n\n{HISTORY_HEADER}\n{chat_history_text}"
        if memory is not None and memory.stack:
            recent = ", ".join(
                f"{item.intent} ({item.timestamp.strftime('%H:%M:%S')})"
                for item in memory.stack[-3:]
            )
            prompt += f"\n\n{INTENTS_HEADER}\nRecent intents: {recent}"
        return prompt

    def build(
        self,
        intent: str,
        user_message: str,
        avatar: AvatarSelector,
        memory: Optional[MindStateStack] = None,
        rag_text: Optional[str] = None,
        chat_history_text: Optional[str] = None,
        flow_context: Optional[Mapping[str, Any]] = None,
        session_context: Optional[Mapping[str, Any]] = None,
        counterpart: Optional[CounterpartProfile] = None,
    ) -> AssembledPrompt:
        """
        Assemble the prompts for one turn.

        Args:
            intent: Resolved intent
            user_message: The user's message
            avatar: Avatar whose persona and templates apply
            memory: Session memory (flow step, summaries, recent intents)
            rag_text: Knowledge-base text to append
            chat_history_text: Rendered chat history to append
            flow_context: Active flow's context values (e.g. extracted_email)
            session_context: Additional per-session values
            counterpart: Known details of the user's side

        Returns:
            AssembledPrompt

        Raises:
            ConfigurationError: If no template resolves
        """
        definitions = self.catalog.resolve(avatar)
        flow_step = memory.current_flow_step if memory else None
        template = self.select_template(avatar, intent, flow_step)

        variables = self.build_variables(
            definitions,
            intent,
            user_message,
            memory,
            counterpart=counterpart,
            session_context=session_context,
            flow_context=flow_context,
        )

        missing = self.missing_variables(template, variables)
        if missing:
            log.warning("template_variables_missing", template_id=template.id, missing=missing)

        system_prompt = substitute(template.system_prompt, variables)
        default_prompt = self.catalog.default_system_prompt()
        if default_prompt is not None and default_prompt.id != template.id:
            default_text = substitute(default_prompt.system_prompt, variables)
            system_prompt = f"{default_text}\n\n{system_prompt}" if system_prompt else default_text

        user_prompt = substitute(template.user_prompt_template, variables)
        user_prompt = self._append_context(user_prompt, memory, rag_text, chat_history_text)

        unresolved = sorted(
            set(PLACEHOLDER_PATTERN.findall(system_prompt + user_prompt))
        )
        if unresolved:
            log.warning(
                "template_placeholders_unresolved",
                template_id=template.id,
                placeholders=unresolved,
            )

        log.info(
            "prompt_assembled",
            template_id=template.id,
            intent=intent,
            flow_step=flow_step,
            system_length=len(system_prompt),
            user_length=len(user_prompt),
        )
        return AssembledPrompt(
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            template_id=template.id,
        )
