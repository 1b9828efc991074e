"""
In-memory Trade Study Store.

Explicit, injectable replacement for a process-global demo list. Each
instance owns its own studies, so tests never leak state into each
other. Returned objects are deep copies; mutating them does not change
the store.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
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


def demo_studies(owner_id: str = "demo-user") -> list[TradeStudy]:
    """Seed data used when no database is configured."""
    return [
        TradeStudy(
            id="airflow-vs-dbt",
            owner_id=owner_id,
            title="Airflow vs dbt for data workflows",
            summary="Compare orchestration vs transformation responsibilities across the stack.",
            status=TradeStudyStatus.DRAFT,
            data={
                "requirements": ["Open-source", "Managed option", "Strong scheduling"],
                "options": ["Airflow", "Dagster", "dbt"],
                "decision": "Use dbt for transforms with lightweight orchestration",
            },
            attachments=[
                Attachment(
                    id="doc-1",
                    trade_study_id="airflow-vs-dbt",
                    file_id="1-demo-doc",
                    type=AttachmentType.DOC,
                    title="Draft comparison doc",
                ),
            ],
        ),
        TradeStudy(
            id="vector-db",
            owner_id=owner_id,
            title="Vector database for AI agent",
            summary="Weigh Pinecone, Weaviate, and pgvector for context storage.",
            status=TradeStudyStatus.IN_REVIEW,
            data={
                "criteria": ["Latency", "Cost", "Operations"],
                "notes": "Awaiting benchmarks",
            },
        ),
    ]


class InMemoryTradeStudyStore:
    """Dict-backed TradeStudyStore."""

    def __init__(self, studies: list[TradeStudy] | None = None):
        self._studies: dict[str, TradeStudy] = {s.id: s.model_copy(deep=True) for s in studies or []}

    @classmethod
    def with_demo_data(cls, owner_id: str = "demo-user") -> "InMemoryTradeStudyStore":
        return cls(demo_studies(owner_id))

    async def load_by_id(self, trade_study_id: str) -> Optional[TradeStudy]:
        study = self._studies.get(trade_study_id)
        return study.model_copy(deep=True) if study else None

    async def list_studies(self, owner_id: str | None = None) -> list[TradeStudy]:
        studies = [s for s in self._studies.values() if owner_id is None or s.owner_id == owner_id]
        studies.sort(key=lambda s: s.updated_at, reverse=True)
        return [s.model_copy(deep=True) for s in studies]

    async def create(
        self,
        owner_id: str,
        title: str,
        summary: str | None = None,
        status: TradeStudyStatus = TradeStudyStatus.DRAFT,
        data: dict[str, Any] | None = None,
    ) -> TradeStudy:
        study = TradeStudy(
            id=uuid.uuid4().hex,
            owner_id=owner_id,
            title=title,
            summary=summary,
            status=TradeStudyStatus(status),
            data=dict(data or {}),
        )
        self._studies[study.id] = study
        logger.info(f"Created trade study {study.id}: {title}")
        return study.model_copy(deep=True)

    async def update(self, trade_study_id: str, **fields: Any) -> Optional[TradeStudy]:
        study = self._studies.get(trade_study_id)
        if study is None:
            logger.warning(f"Update skipped: trade study {trade_study_id} not found")
            return None
        changes = clean_update_fields(fields)
        changes["updated_at"] = datetime.now(timezone.utc)
        updated = study.model_copy(update=changes, deep=True)
        self._studies[trade_study_id] = updated
        return updated.model_copy(deep=True)

    async def create_attachment(
        self,
        trade_study_id: str,
        file_id: str,
        type: AttachmentType,
        title: str | None = None,
    ) -> Attachment:
        study = self._studies.get(trade_study_id)
        if study is None:
            raise TradeStudyNotFoundError(trade_study_id)
        attachment = Attachment(
            id=f"att-{uuid.uuid4().hex[:8]}",
            trade_study_id=trade_study_id,
            file_id=file_id,
            type=AttachmentType(type),
            title=title,
        )
        study.attachments.append(attachment)
        study.updated_at = datetime.now(timezone.utc)
        return attachment.model_copy()
