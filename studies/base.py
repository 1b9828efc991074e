"""
Trade Study Store protocol.

The pipeline and the tools only ever use these operations; they never
issue raw queries. Any object satisfying the protocol can be injected,
so tests and the demo mode use the in-memory store while deployments
use SQLite.

Semantics shared by every implementation:
    - load_by_id() returns None for an unknown id (never raises)
    - update() applies only the fields it is given; unknown id → None
    - create_attachment() raises TradeStudyNotFoundError for an unknown id
    - last writer wins (no optimistic concurrency token)
"""

from __future__ import annotations

from typing import Any, Optional, Protocol

from agents.base import Attachment, AttachmentType, TradeStudy, TradeStudyStatus

UPDATABLE_FIELDS = ("title", "summary", "status", "data")


class TradeStudyStore(Protocol):
    async def load_by_id(self, trade_study_id: str) -> Optional[TradeStudy]:
        ...

    async def list_studies(self, owner_id: str | None = None) -> list[TradeStudy]:
        ...

    async def create(
        self,
        owner_id: str,
        title: str,
        summary: str | None = None,
        status: TradeStudyStatus = TradeStudyStatus.DRAFT,
        data: dict[str, Any] | None = None,
    ) -> TradeStudy:
        ...

    async def update(self, trade_study_id: str, **fields: Any) -> Optional[TradeStudy]:
        ...

    async def create_attachment(
        self,
        trade_study_id: str,
        file_id: str,
        type: AttachmentType,
        title: str | None = None,
    ) -> Attachment:
        ...


def clean_update_fields(fields: dict[str, Any]) -> dict[str, Any]:
    """Keep only updatable fields and coerce status to the enum."""
    unknown = set(fields) - set(UPDATABLE_FIELDS)
    if unknown:
        raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")
    cleaned = dict(fields)
    if "status" in cleaned and cleaned["status"] is not None:
        cleaned["status"] = TradeStudyStatus(cleaned["status"])
    if cleaned.get("status") is None:
        cleaned.pop("status", None)
    if "title" in cleaned and cleaned["title"] is None:
        cleaned.pop("title")
    if "data" in cleaned and cleaned["data"] is None:
        cleaned.pop("data")
    return cleaned
