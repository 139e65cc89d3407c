"""Flow execution repository."""

from typing import List, Optional

import aiosqlite
import structlog

from avatar_engine.core.exceptions import PersistenceError
from avatar_engine.domain.models.flow import FlowExecution

log = structlog.get_logger(__name__)


class FlowExecutionRepository:
    """Stores FlowExecution documents; terminal executions are kept as history."""

    def __init__(self, db_path: str):
        self.db_path = db_path

    async def save(self, execution: FlowExecution) -> None:
        """Upsert an execution by id."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    "INSERT INTO flow_executions "
                    "(id, session_id, flow_id, status, document, start_time, last_activity) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?) "
                    "ON CONFLICT(id) DO UPDATE SET "
                    "status = excluded.status, document = excluded.document, "
                    "last_activity = excluded.last_activity",
                    (
                        execution.id,
                        execution.session_id,
                        execution.flow_id,
                        execution.status.value,
                        execution.model_dump_json(),
                        execution.start_time.isoformat(),
                        execution.last_activity.isoformat(),
                    ),
                )
                await db.commit()
        except aiosqlite.Error as e:
            log.error(
                "flow_execution_save_failed",
                session_id=execution.session_id,
                execution_id=execution.id,
                error=str(e),
            )
            raise PersistenceError(
                f"Failed to save flow execution {execution.id}: {e}"
            ) from e

    async def get_active(self, session_id: str) -> Optional[FlowExecution]:
        """Return the session's active execution, if any."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute(
                    "SELECT document FROM flow_executions "
                    "WHERE session_id = ? AND status = 'active'",
                    (session_id,),
                )
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            log.error("flow_execution_load_failed", session_id=session_id, error=str(e))
            raise PersistenceError(
                f"Failed to load active flow for {session_id}: {e}"
            ) from e

        if not row:
            return None
        return FlowExecution.model_validate_json(row[0])

    async def list_for_session(self, session_id: str) -> List[FlowExecution]:
        """All executions of a session, oldest first."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute(
                    "SELECT document FROM flow_executions "
                    "WHERE session_id = ? ORDER BY start_time",
                    (session_id,),
                )
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise PersistenceError(
                f"Failed to list flow executions for {session_id}: {e}"
            ) from e
        return [FlowExecution.model_validate_json(row[0]) for row in rows]
