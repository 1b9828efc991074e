"""
SQLite persistence for trade studies and their attachments.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from agents.base import (
    Attachment,
    AttachmentType,
    TradeStudy,
    TradeStudyNotFoundError,
    TradeStudyStatus,
)
from studies.base import clean_update_fields

logger = logging.getLogger(__name__)

_DEFAULT_DB_PATH = Path("store/trade_studies.db")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS trade_studies (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL DEFAULT '',
    title TEXT NOT NULL,
    summary TEXT,
    status TEXT NOT NULL DEFAULT 'draft',
    data TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS attachments (
    id TEXT PRIMARY KEY,
    trade_study_id TEXT NOT NULL REFERENCES trade_studies(id) ON DELETE CASCADE,
    file_id TEXT NOT NULL,
    type TEXT NOT NULL,
    title TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_studies_owner ON trade_studies(owner_id);
CREATE INDEX IF NOT EXISTS idx_attachments_study ON attachments(trade_study_id);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SQLiteTradeStudyStore:
    """SQLite-backed TradeStudyStore. `data` is stored as a JSON column."""

    def __init__(self, db_path: str | Path | None = None):
        self.db_path = Path(db_path) if db_path else _DEFAULT_DB_PATH
        if str(self.db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn: Optional[sqlite3.Connection] = None
        self._init_db()

    def _init_db(self) -> None:
        conn = self._get_conn()
        conn.executescript(_SCHEMA)
        conn.commit()

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    # ── Row mapping ──────────────────────────────────────────────

    def _attachments_for(self, trade_study_id: str) -> list[Attachment]:
        rows = self._get_conn().execute(
            "SELECT * FROM attachments WHERE trade_study_id = ? ORDER BY created_at",
            (trade_study_id,),
        ).fetchall()
        return [self._row_to_attachment(r) for r in rows]

    @staticmethod
    def _row_to_attachment(row: sqlite3.Row) -> Attachment:
        return Attachment(
            id=row["id"],
            trade_study_id=row["trade_study_id"],
            file_id=row["file_id"],
            type=AttachmentType(row["type"]),
            title=row["title"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def _row_to_study(self, row: sqlite3.Row) -> TradeStudy:
        return TradeStudy(
            id=row["id"],
            owner_id=row["owner_id"],
            title=row["title"],
            summary=row["summary"],
            status=TradeStudyStatus(row["status"]),
            data=json.loads(row["data"] or "{}"),
            attachments=self._attachments_for(row["id"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    # ── Studies ──────────────────────────────────────────────────

    async def load_by_id(self, trade_study_id: str) -> Optional[TradeStudy]:
        row = self._get_conn().execute(
            "SELECT * FROM trade_studies WHERE id = ?", (trade_study_id,)
        ).fetchone()
        return self._row_to_study(row) if row else None

    async def list_studies(self, owner_id: str | None = None) -> list[TradeStudy]:
        conn = self._get_conn()
        if owner_id is None:
            rows = conn.execute("SELECT * FROM trade_studies ORDER BY updated_at DESC").fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM trade_studies WHERE owner_id = ? ORDER BY updated_at DESC",
                (owner_id,),
            ).fetchall()
        return [self._row_to_study(r) for r in rows]

    async def create(
        self,
        owner_id: str,
        title: str,
        summary: str | None = None,
        status: TradeStudyStatus = TradeStudyStatus.DRAFT,
        data: dict[str, Any] | None = None,
    ) -> TradeStudy:
        study_id = uuid.uuid4().hex
        now = _now()
        conn = self._get_conn()
        conn.execute(
            """INSERT INTO trade_studies (id, owner_id, title, summary, status, data, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                study_id, owner_id, title, summary, TradeStudyStatus(status).value,
                json.dumps(data or {}, default=str), now, now,
            ),
        )
        conn.commit()
        logger.info(f"Created trade study {study_id}: {title}")
        return await self.load_by_id(study_id)

    async def update(self, trade_study_id: str, **fields: Any) -> Optional[TradeStudy]:
        changes = clean_update_fields(fields)
        conn = self._get_conn()
        exists = conn.execute("SELECT 1 FROM trade_studies WHERE id = ?", (trade_study_id,)).fetchone()
        if not exists:
            logger.warning(f"Update skipped: trade study {trade_study_id} not found")
            return None

        columns = []
        values: list[Any] = []
        for name, value in changes.items():
            if name == "data":
                value = json.dumps(value, default=str)
            elif name == "status":
                value = value.value
            columns.append(f"{name} = ?")
            values.append(value)
        columns.append("updated_at = ?")
        values.append(_now())
        values.append(trade_study_id)

        conn.execute(f"UPDATE trade_studies SET {', '.join(columns)} WHERE id = ?", values)
        conn.commit()
        return await self.load_by_id(trade_study_id)

    # ── Attachments ──────────────────────────────────────────────

    async def create_attachment(
        self,
        trade_study_id: str,
        file_id: str,
        type: AttachmentType,
        title: str | None = None,
    ) -> Attachment:
        conn = self._get_conn()
        exists = conn.execute("SELECT 1 FROM trade_studies WHERE id = ?", (trade_study_id,)).fetchone()
        if not exists:
            raise TradeStudyNotFoundError(trade_study_id)

        attachment_id = f"att-{uuid.uuid4().hex[:8]}"
        now = _now()
        conn.execute(
            """INSERT INTO attachments (id, trade_study_id, file_id, type, title, created_at)
            VALUES (?, ?, ?, ?, ?, ?)""",
            (attachment_id, trade_study_id, file_id, AttachmentType(type).value, title, now),
        )
        conn.execute("UPDATE trade_studies SET updated_at = ? WHERE id = ?", (now, trade_study_id))
        conn.commit()
        return Attachment(
            id=attachment_id,
            trade_study_id=trade_study_id,
            file_id=file_id,
            type=AttachmentType(type),
            title=title,
            created_at=datetime.fromisoformat(now),
        )
