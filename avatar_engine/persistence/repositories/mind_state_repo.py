"""Mind-state repository: full-document storage of session memory."""

from typing import Optional

import aiosqlite
import structlog

from avatar_engine.core.exceptions import PersistenceError
from avatar_engine.domain.models.memory import MindStateStack

log = structlog.get_logger(__name__)


class MindStateRepository:
    """Load/save MindStateStack documents keyed by session id."""

    def __init__(self, db_path: str):
        self.db_path = db_path

    async def load(self, session_id: str) -> Optional[MindStateStack]:
        """Return the stored state, or None when the session is unknown."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute(
                    "SELECT document FROM mind_states WHERE session_id = ?",
                    (session_id,),
                )
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            log.error("mind_state_load_failed", session_id=session_id, error=str(e))
            raise PersistenceError(f"Failed to load memory for {session_id}: {e}") from e

        if not row:
            return None
        return MindStateStack.model_validate_json(row[0])

    async def save(self, state: MindStateStack) -> None:
        """Upsert the whole document (idempotent overwrite)."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    "INSERT INTO mind_states (session_id, document, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?) "
                    "ON CONFLICT(session_id) DO UPDATE SET "
                    "document = excluded.document, updated_at = excluded.updated_at",
                    (
                        state.session_id,
                        state.model_dump_json(),
                        state.created_at.isoformat(),
                        state.updated_at.isoformat(),
                    ),
                )
                await db.commit()
        except aiosqlite.Error as e:
            log.error("mind_state_save_failed", session_id=state.session_id, error=str(e))
            raise PersistenceError(
                f"Failed to save memory for {state.session_id}: {e}"
            ) from e

