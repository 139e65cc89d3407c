"""
Service protocol definitions (interfaces).

Collaborators the engine consumes but does not implement.
"""

from typing import List, Protocol


class IKnowledgeLookup(Protocol):
    """
    Protocol for the knowledge-base (RAG) lookup.

    Implementations wrap a vector-search client; the engine only needs
    ranked text snippets for a query.
    """

    async def query(self, text: str) -> List[str]:
        """
        Retrieve snippets relevant to ``text``.

        Args:
            text: The user's message

        Returns:
            Snippets, most relevant first (may be empty)
        """
        ...

