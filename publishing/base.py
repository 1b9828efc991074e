"""
Publishing service contract.

Every operation returns a PublishOutcome instead of raising:
    ok       artifact created (file_id set)
    skipped  precondition not met (no credentials, no destination folder)
    error    an attempt was made and failed
"""

from __future__ import annotations

from typing import Any, Optional, Protocol

from pydantic import BaseModel

from agents.base import StepStatus
from app_lib.formatters import DocumentSection, SlideContent


class PublishOutcome(BaseModel):
    status: StepStatus
    message: str
    file_id: Optional[str] = None

    @classmethod
    def ok(cls, file_id: str, message: str) -> "PublishOutcome":
        return cls(status=StepStatus.OK, file_id=file_id, message=message)

    @classmethod
    def skipped(cls, message: str) -> "PublishOutcome":
        return cls(status=StepStatus.SKIPPED, message=message)

    @classmethod
    def error(cls, message: str) -> "PublishOutcome":
        return cls(status=StepStatus.ERROR, message=message)


class Publisher(Protocol):
    async def create_document(
        self, title: str, sections: list[DocumentSection], folder_id: str | None = None,
    ) -> PublishOutcome:
        ...

    async def create_spreadsheet(
        self, title: str, matrix: list[list[Any]], folder_id: str | None = None,
    ) -> PublishOutcome:
        ...

    async def create_slide_deck(
        self, title: str, slides: list[SlideContent] | None = None, folder_id: str | None = None,
    ) -> PublishOutcome:
        ...

    async def upload_file(
        self, title: str, content: str, mime_type: str = "text/markdown", folder_id: str | None = None,
    ) -> PublishOutcome:
        ...
