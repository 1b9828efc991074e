"""
Export Coordinator — fans trade study artifacts out to publishing targets.

Each target is attempted independently: an exception or error outcome on
one target never prevents the next one from being attempted, and never
propagates to the caller. Every attempt yields exactly one status entry.

Attachments are created only for `ok` outcomes that carry a file id.
A failed attachment write after a successful export keeps the `ok`
status and notes the problem in the message.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional

from agents.base import (
    Alternative,
    AttachmentType,
    Criterion,
    ExportStatus,
    PublishResult,
    PublishTargets,
    ScoredAlternative,
    StepStatus,
    TradeStudy,
)
from app_lib.formatters import (
    build_document_sections,
    build_scoring_matrix,
    build_slides,
    parse_entries,
    study_to_markdown,
)
from publishing.base import PublishOutcome, Publisher
from studies.base import TradeStudyStore

logger = logging.getLogger(__name__)

TARGET_LABELS = {
    "doc": "Google Docs",
    "sheet": "Google Sheets",
    "slides": "Google Slides",
    "drive": "Google Drive",
}


class ExportCoordinator:
    """Per-target isolated export with attachment bookkeeping."""

    def __init__(self, publisher: Publisher, store: TradeStudyStore):
        self.publisher = publisher
        self.store = store

    async def _attempt(
        self,
        label: str,
        call: Callable[[], Awaitable[PublishOutcome]],
    ) -> PublishOutcome:
        try:
            return await call()
        except Exception as e:
            logger.warning(f"[{label} export] failed: {e}")
            return PublishOutcome.error(str(e) or type(e).__name__)

    async def _attach(
        self,
        study_id: str,
        outcome: PublishOutcome,
        attachment_type: AttachmentType,
        title: str,
    ) -> str:
        """Record an attachment for a successful export; returns the (possibly annotated) message."""
        if outcome.status != StepStatus.OK or not outcome.file_id:
            return outcome.message
        try:
            await self.store.create_attachment(study_id, outcome.file_id, attachment_type, title)
        except Exception as e:
            logger.warning(f"Attachment for {outcome.file_id} on {study_id} failed: {e}")
            return f"{outcome.message} (attachment not recorded: {e})"
        return outcome.message

    # ── Generation export (doc → sheet → slide) ──────────────────

    async def export_generation(
        self,
        study_id: str,
        topic: str,
        criteria: list[Criterion],
        alternatives: list[Alternative],
        scored: list[ScoredAlternative],
        winner: Optional[ScoredAlternative],
        folder_id: str | None = None,
        research_summary: str | None = None,
    ) -> list[ExportStatus]:
        winner_name = winner.name if winner else None
        plan = [
            (
                "doc", AttachmentType.DOC, f"{topic} Summary",
                lambda: self.publisher.create_document(
                    f"{topic} Summary",
                    build_document_sections(topic, criteria, scored, winner_name, research_summary),
                    folder_id,
                ),
            ),
            (
                "sheet", AttachmentType.SHEET, f"{topic} Scoring",
                lambda: self.publisher.create_spreadsheet(
                    f"{topic} Scoring", build_scoring_matrix(criteria, scored), folder_id,
                ),
            ),
            (
                "slide", AttachmentType.SLIDE, f"{topic} Slides",
                lambda: self.publisher.create_slide_deck(
                    f"{topic} Slides", build_slides(topic, criteria, scored, winner_name), folder_id,
                ),
            ),
        ]

        statuses = []
        for artifact, attachment_type, title, call in plan:
            outcome = await self._attempt(artifact, call)
            message = await self._attach(study_id, outcome, attachment_type, title)
            statuses.append(ExportStatus(
                artifact=artifact,
                status=outcome.status,
                message=message,
                file_id=outcome.file_id,
            ))
            logger.info(f"Export {artifact} for {study_id}: {outcome.status.value}")
        return statuses

    # ── Publish existing study (doc, sheet, slides, drive) ───────

    async def publish(
        self,
        study: TradeStudy,
        targets: PublishTargets,
        folder_id: str | None = None,
    ) -> list[PublishResult]:
        data = study.data or {}
        criteria = parse_entries(data.get("criteria"), Criterion)
        scored = parse_entries(data.get("scored"), ScoredAlternative)
        winner = data.get("winner") if isinstance(data.get("winner"), str) else None

        calls = {
            "doc": (
                AttachmentType.DOC, f"{study.title} Summary",
                lambda: self.publisher.create_document(
                    f"{study.title} Summary",
                    build_document_sections(study.title, criteria, scored, winner, study.summary),
                    folder_id,
                ),
            ),
            "sheet": (
                AttachmentType.SHEET, f"{study.title} Scoring",
                lambda: self.publisher.create_spreadsheet(
                    f"{study.title} Scoring", build_scoring_matrix(criteria, scored), folder_id,
                ),
            ),
            "slides": (
                AttachmentType.SLIDE, f"{study.title} Slides",
                lambda: self.publisher.create_slide_deck(
                    f"{study.title} Slides", build_slides(study.title, criteria, scored, winner), folder_id,
                ),
            ),
            "drive": (
                AttachmentType.DRIVE, f"{study.title}.md",
                lambda: self.publisher.upload_file(
                    f"{study.title}.md", study_to_markdown(study), "text/markdown", folder_id,
                ),
            ),
        }

        results = []
        for target in targets.selected():
            attachment_type, title, call = calls[target]
            outcome = await self._attempt(target, call)
            message = await self._attach(study.id, outcome, attachment_type, title)
            results.append(PublishResult(
                target=TARGET_LABELS[target],
                status=outcome.status,
                message=message,
                file_id=outcome.file_id,
            ))
        return results
