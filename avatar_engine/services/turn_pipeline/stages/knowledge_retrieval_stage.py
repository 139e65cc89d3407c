"""
Stage 4: Optional knowledge-base lookup.
"""

from typing import TYPE_CHECKING, Mapping, Optional

import structlog

from ..base import TurnStage
from avatar_engine.core.definition_loader import DefinitionCatalog
from avatar_engine.services.protocols import IKnowledgeLookup

log = structlog.get_logger(__name__)

if TYPE_CHECKING:
    from ..context import TurnContext


class KnowledgeRetrievalStage(TurnStage):
    """
    Fetch snippets for knowledge-seeking intents.

    Each avatar type lists its knowledge intents and may have its own
    lookup; intents outside the list, or avatar types without a lookup,
    leave rag_text unset.
    """

    def __init__(
        self,
        catalog: DefinitionCatalog,
        lookups: Optional[Mapping[str, IKnowledgeLookup]] = None,
    ):
        self.catalog = catalog
        self.lookups = dict(lookups or {})

    async def process(self, context: "TurnContext") -> "TurnContext":
        definitions = self.catalog.resolve(context.avatar)
        intent = context.intent
        lookup = self.lookups.get(definitions.avatar_type)

        if lookup is None or intent not in definitions.knowledge_intents:
            return context

        snippets = await lookup.query(context.user_message)
        log.info(
            "knowledge_retrieved",
            session_id=context.session_id,
            intent=intent,
            avatar_type=definitions.avatar_type,
            snippet_count=len(snippets),
        )
        if snippets:
            context.rag_text = "\n".join(snippets)
        return context
