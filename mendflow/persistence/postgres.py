"""PostgreSQL implementation of the execution repository."""

from __future__ import annotations

import json
from typing import Any, Optional, Sequence

import asyncpg

from ..contracts import Step, Workflow
from ..errors import VersionConflict
from .models import (
    EXECUTION_UPDATE_FIELDS,
    STEP_EXECUTION_UPDATE_FIELDS,
    TERMINAL_EXECUTION_STATUSES,
    EventType,
    ExecutionEvent,
    ExecutionRecord,
    StepExecutionRecord,
    check_update_fields,
    utcnow,
)
from .repository import ExecutionRepository

_JSON_COLUMNS = {"input_variables", "output_result", "input_data", "output_data", "metadata"}
_TERMINAL = [s.value for s in TERMINAL_EXECUTION_STATUSES]


def _encode(column: str, value: Any) -> Any:
    if column in _JSON_COLUMNS:
        return json.dumps(value, default=str)
    if hasattr(value, "value"):
        return value.value
    return value


def _decode_record(record: asyncpg.Record) -> dict[str, Any]:
    data = dict(record)
    for key in _JSON_COLUMNS & data.keys():
        if isinstance(data[key], str):
            data[key] = json.loads(data[key])
    return data


class PostgresExecutionRepository(ExecutionRepository):
    """Persist execution state using PostgreSQL.

    Updates are keyed on primary keys so concurrent executions only contend
    on their own rows.
    """

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                steps JSONB NOT NULL DEFAULT '[]'::jsonb,
                version INTEGER NOT NULL DEFAULT 1,
                user_id TEXT
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS executions (
                execution_id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                status TEXT NOT NULL,
                current_step_index INTEGER NOT NULL DEFAULT 0,
                current_step_id TEXT,
                total_steps INTEGER NOT NULL DEFAULT 0,
                input_variables JSONB,
                output_result JSONB,
                error_message TEXT,
                started_at TIMESTAMPTZ,
                completed_at TIMESTAMPTZ,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS step_executions (
                id TEXT PRIMARY KEY,
                execution_id TEXT NOT NULL REFERENCES executions(execution_id),
                step_id TEXT NOT NULL,
                step_index INTEGER NOT NULL,
                step_kind TEXT NOT NULL,
                action_name TEXT,
                status TEXT NOT NULL,
                input_data JSONB,
                output_data JSONB,
                error_message TEXT,
                retry_count INTEGER NOT NULL DEFAULT 0,
                was_healed BOOLEAN NOT NULL DEFAULT false,
                started_at TIMESTAMPTZ,
                completed_at TIMESTAMPTZ,
                created_at TIMESTAMPTZ NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS execution_events (
                seq BIGSERIAL PRIMARY KEY,
                id TEXT NOT NULL UNIQUE,
                execution_id TEXT NOT NULL REFERENCES executions(execution_id),
                event_type TEXT NOT NULL,
                step_id TEXT,
                step_index INTEGER,
                message TEXT NOT NULL,
                metadata JSONB,
                original_error TEXT,
                fix_applied TEXT,
                ai_reasoning TEXT,
                retry_count INTEGER,
                created_at TIMESTAMPTZ NOT NULL
            )
            """
        )

    async def _insert(self, table: str, values: dict[str, Any]) -> None:
        columns = ", ".join(values)
        placeholders = ", ".join(f"${i}" for i in range(1, len(values) + 1))
        conn = await self._connect()
        try:
            await conn.execute(
                f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
                *(_encode(k, v) for k, v in values.items()),
            )
        finally:
            await conn.close()

    # ------------------------------------------------------------------
    async def save_workflow(self, workflow: Workflow) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO workflows (id, name, steps, version, user_id)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (id) DO UPDATE
                SET name = $2, steps = $3, version = $4, user_id = $5
                """,
                workflow.id,
                workflow.name,
                json.dumps([s.model_dump(mode="json") for s in workflow.steps]),
                workflow.version,
                workflow.user_id,
            )
        finally:
            await conn.close()

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT id, name, steps, version, user_id FROM workflows WHERE id = $1",
                workflow_id,
            )
        finally:
            await conn.close()
        if not row:
            return None
        steps = row["steps"]
        return Workflow(
            id=row["id"],
            name=row["name"],
            steps=json.loads(steps) if isinstance(steps, str) else steps,
            version=row["version"],
            user_id=row["user_id"],
        )

    async def update_workflow_steps(
        self, workflow_id: str, steps: Sequence[Step], expected_version: int
    ) -> Workflow:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                """
                UPDATE workflows SET steps = $1, version = version + 1
                WHERE id = $2 AND version = $3
                RETURNING version
                """,
                json.dumps([s.model_dump(mode="json") for s in steps]),
                workflow_id,
                expected_version,
            )
            if row is None:
                current = await conn.fetchval(
                    "SELECT version FROM workflows WHERE id = $1", workflow_id
                )
        finally:
            await conn.close()
        if row is None:
            if current is None:
                raise KeyError(f"Workflow not found: {workflow_id}")
            raise VersionConflict(workflow_id, expected_version, current)
        workflow = await self.get_workflow(workflow_id)
        if workflow is None:
            raise KeyError(f"Workflow not found: {workflow_id}")
        return workflow

    # ------------------------------------------------------------------
    async def create_execution(self, execution: ExecutionRecord) -> ExecutionRecord:
        await self._insert("executions", execution.model_dump(mode="python"))
        return execution

    async def update_execution(
        self, execution_id: str, updates: dict[str, Any]
    ) -> None:
        check_update_fields(updates, EXECUTION_UPDATE_FIELDS)
        if not updates:
            return
        values = {**updates, "updated_at": utcnow()}
        assignments = ", ".join(
            f"{column} = ${i}" for i, column in enumerate(values, start=1)
        )
        n = len(values)
        conn = await self._connect()
        try:
            await conn.execute(
                f"UPDATE executions SET {assignments} "
                f"WHERE execution_id = ${n + 1} AND status <> ALL(${n + 2}::text[])",
                *(_encode(k, v) for k, v in values.items()),
                execution_id,
                _TERMINAL,
            )
        finally:
            await conn.close()

    async def get_execution(self, execution_id: str) -> ExecutionRecord | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT * FROM executions WHERE execution_id = $1", execution_id
            )
        finally:
            await conn.close()
        return ExecutionRecord.model_validate(_decode_record(row)) if row else None

    async def list_executions(
        self, workflow_id: Optional[str] = None
    ) -> list[ExecutionRecord]:
        conn = await self._connect()
        try:
            if workflow_id:
                rows = await conn.fetch(
                    "SELECT * FROM executions WHERE workflow_id = $1 ORDER BY created_at",
                    workflow_id,
                )
            else:
                rows = await conn.fetch("SELECT * FROM executions ORDER BY created_at")
        finally:
            await conn.close()
        return [ExecutionRecord.model_validate(_decode_record(r)) for r in rows]

    # ------------------------------------------------------------------
    async def create_step_execution(
        self, record: StepExecutionRecord
    ) -> StepExecutionRecord:
        await self._insert("step_executions", record.model_dump(mode="python"))
        return record

    async def update_step_execution(
        self, step_execution_id: str, updates: dict[str, Any]
    ) -> None:
        check_update_fields(updates, STEP_EXECUTION_UPDATE_FIELDS)
        if not updates:
            return
        assignments = ", ".join(
            f"{column} = ${i}" for i, column in enumerate(updates, start=1)
        )
        conn = await self._connect()
        try:
            await conn.execute(
                f"UPDATE step_executions SET {assignments} WHERE id = ${len(updates) + 1}",
                *(_encode(k, v) for k, v in updates.items()),
                step_execution_id,
            )
        finally:
            await conn.close()

    async def list_step_executions(
        self, execution_id: str
    ) -> list[StepExecutionRecord]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT * FROM step_executions WHERE execution_id = $1 ORDER BY step_index",
                execution_id,
            )
        finally:
            await conn.close()
        return [StepExecutionRecord.model_validate(_decode_record(r)) for r in rows]

    # ------------------------------------------------------------------
    async def append_event(self, event: ExecutionEvent) -> ExecutionEvent:
        await self._insert("execution_events", event.model_dump(mode="python"))
        return event

    async def list_events(
        self,
        execution_id: str,
        event_type: Optional[EventType] = None,
        limit: Optional[int] = None,
    ) -> list[ExecutionEvent]:
        query = "SELECT * FROM execution_events WHERE execution_id = $1"
        params: list[Any] = [execution_id]
        if event_type is not None:
            params.append(EventType(event_type).value)
            query += f" AND event_type = ${len(params)}"
        query += " ORDER BY seq"
        if limit is not None:
            params.append(limit)
            query += f" LIMIT ${len(params)}"
        conn = await self._connect()
        try:
            rows = await conn.fetch(query, *params)
        finally:
            await conn.close()
        events = []
        for row in rows:
            data = _decode_record(row)
            data.pop("seq", None)
            events.append(ExecutionEvent.model_validate(data))
        return events
