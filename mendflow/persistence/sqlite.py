"""SQLite implementation of the execution repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Sequence

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
_TERMINAL = tuple(s.value for s in TERMINAL_EXECUTION_STATUSES)


def _encode(column: str, value: Any) -> Any:
    if column in _JSON_COLUMNS:
        return json.dumps(value, default=str)
    if isinstance(value, datetime):
        return value.isoformat()
    if hasattr(value, "value"):
        return value.value
    if isinstance(value, bool):
        return int(value)
    return value


def _decode_row(row: sqlite3.Row) -> dict[str, Any]:
    data = dict(row)
    for key in _JSON_COLUMNS & data.keys():
        data[key] = json.loads(data[key]) if data[key] is not None else None
    return data


class SQLiteExecutionRepository(ExecutionRepository):
    """Persist execution state using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                steps TEXT NOT NULL,
                version INTEGER NOT NULL DEFAULT 1,
                user_id TEXT
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS executions (
                execution_id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                status TEXT NOT NULL,
                current_step_index INTEGER NOT NULL DEFAULT 0,
                current_step_id TEXT,
                total_steps INTEGER NOT NULL DEFAULT 0,
                input_variables TEXT,
                output_result TEXT,
                error_message TEXT,
                started_at TEXT,
                completed_at TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS step_executions (
                id TEXT PRIMARY KEY,
                execution_id TEXT NOT NULL,
                step_id TEXT NOT NULL,
                step_index INTEGER NOT NULL,
                step_kind TEXT NOT NULL,
                action_name TEXT,
                status TEXT NOT NULL,
                input_data TEXT,
                output_data TEXT,
                error_message TEXT,
                retry_count INTEGER NOT NULL DEFAULT 0,
                was_healed INTEGER NOT NULL DEFAULT 0,
                started_at TEXT,
                completed_at TEXT,
                created_at TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS execution_events (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                execution_id TEXT NOT NULL,
                event_type TEXT NOT NULL,
                step_id TEXT,
                step_index INTEGER,
                message TEXT NOT NULL,
                metadata TEXT,
                original_error TEXT,
                fix_applied TEXT,
                ai_reasoning TEXT,
                retry_count INTEGER,
                created_at TEXT NOT NULL
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_step_executions_execution ON step_executions(execution_id)"
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_execution_events_execution ON execution_events(execution_id)"
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()
            return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    def _insert(self, table: str, values: dict[str, Any]) -> None:
        columns = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        self._execute(
            f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
            *(_encode(k, v) for k, v in values.items()),
        )

    def _swap_workflow_steps(
        self, workflow_id: str, steps_json: str, expected_version: int
    ) -> None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(
                "UPDATE workflows SET steps = ?, version = version + 1 WHERE id = ? AND version = ?",
                (steps_json, workflow_id, expected_version),
            )
            self._conn.commit()
            if cur.rowcount == 1:
                return
            cur.execute("SELECT version FROM workflows WHERE id = ?", (workflow_id,))
            row = cur.fetchone()
        if row is None:
            raise KeyError(f"Workflow not found: {workflow_id}")
        raise VersionConflict(workflow_id, expected_version, row["version"])

    # ------------------------------------------------------------------
    # Workflows
    async def save_workflow(self, workflow: Workflow) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT OR REPLACE INTO workflows (id, name, steps, version, user_id) VALUES (?, ?, ?, ?, ?)",
            workflow.id,
            workflow.name,
            json.dumps([s.model_dump(mode="json") for s in workflow.steps]),
            workflow.version,
            workflow.user_id,
        )

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT id, name, steps, version, user_id FROM workflows WHERE id = ?",
            workflow_id,
        )
        if not row:
            return None
        return Workflow(
            id=row["id"],
            name=row["name"],
            steps=json.loads(row["steps"]),
            version=row["version"],
            user_id=row["user_id"],
        )

    async def update_workflow_steps(
        self, workflow_id: str, steps: Sequence[Step], expected_version: int
    ) -> Workflow:
        steps_json = json.dumps([s.model_dump(mode="json") for s in steps])
        await asyncio.to_thread(
            self._swap_workflow_steps, workflow_id, steps_json, expected_version
        )
        workflow = await self.get_workflow(workflow_id)
        if workflow is None:
            raise KeyError(f"Workflow not found: {workflow_id}")
        return workflow

    # ------------------------------------------------------------------
    # Executions
    async def create_execution(self, execution: ExecutionRecord) -> ExecutionRecord:
        await asyncio.to_thread(
            self._insert, "executions", execution.model_dump(mode="python")
        )
        return execution

    async def update_execution(
        self, execution_id: str, updates: dict[str, Any]
    ) -> None:
        check_update_fields(updates, EXECUTION_UPDATE_FIELDS)
        if not updates:
            return
        values = {**updates, "updated_at": utcnow()}
        assignments = ", ".join(f"{column} = ?" for column in values)
        placeholders = ", ".join("?" for _ in _TERMINAL)
        await asyncio.to_thread(
            self._execute,
            f"UPDATE executions SET {assignments} WHERE execution_id = ? AND status NOT IN ({placeholders})",
            *(_encode(k, v) for k, v in values.items()),
            execution_id,
            *_TERMINAL,
        )

    async def get_execution(self, execution_id: str) -> ExecutionRecord | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT * FROM executions WHERE execution_id = ?",
            execution_id,
        )
        return ExecutionRecord.model_validate(_decode_row(row)) if row else None

    async def list_executions(
        self, workflow_id: Optional[str] = None
    ) -> list[ExecutionRecord]:
        if workflow_id:
            rows = await asyncio.to_thread(
                self._fetchall,
                "SELECT * FROM executions WHERE workflow_id = ? ORDER BY created_at",
                workflow_id,
            )
        else:
            rows = await asyncio.to_thread(
                self._fetchall, "SELECT * FROM executions ORDER BY created_at"
            )
        return [ExecutionRecord.model_validate(_decode_row(r)) for r in rows]

    # ------------------------------------------------------------------
    # Step executions
    async def create_step_execution(
        self, record: StepExecutionRecord
    ) -> StepExecutionRecord:
        await asyncio.to_thread(
            self._insert, "step_executions", record.model_dump(mode="python")
        )
        return record

    async def update_step_execution(
        self, step_execution_id: str, updates: dict[str, Any]
    ) -> None:
        check_update_fields(updates, STEP_EXECUTION_UPDATE_FIELDS)
        if not updates:
            return
        assignments = ", ".join(f"{column} = ?" for column in updates)
        await asyncio.to_thread(
            self._execute,
            f"UPDATE step_executions SET {assignments} WHERE id = ?",
            *(_encode(k, v) for k, v in updates.items()),
            step_execution_id,
        )

    async def list_step_executions(
        self, execution_id: str
    ) -> list[StepExecutionRecord]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT * FROM step_executions WHERE execution_id = ? ORDER BY step_index",
            execution_id,
        )
        return [StepExecutionRecord.model_validate(_decode_row(r)) for r in rows]

    # ------------------------------------------------------------------
    # Events
    async def append_event(self, event: ExecutionEvent) -> ExecutionEvent:
        await asyncio.to_thread(
            self._insert, "execution_events", event.model_dump(mode="python")
        )
        return event

    async def list_events(
        self,
        execution_id: str,
        event_type: Optional[EventType] = None,
        limit: Optional[int] = None,
    ) -> list[ExecutionEvent]:
        query = "SELECT * FROM execution_events WHERE execution_id = ?"
        params: list[Any] = [execution_id]
        if event_type is not None:
            query += " AND event_type = ?"
            params.append(EventType(event_type).value)
        query += " ORDER BY seq"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        rows = await asyncio.to_thread(self._fetchall, query, *params)
        events = []
        for row in rows:
            data = _decode_row(row)
            data.pop("seq", None)
            events.append(ExecutionEvent.model_validate(data))
        return events
