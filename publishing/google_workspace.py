"""
Google Workspace publisher (Docs, Sheets, Slides, Drive).

Authenticates with a service account key file. The googleapiclient
calls are blocking, so each export runs on a worker thread.

Files are created through the Drive API inside the destination folder
(service accounts cannot own files in My Drive), then filled through the
Docs / Sheets / Slides batch APIs.
"""

from __future__ import annotations

import asyncio
import io
import logging
import os
import uuid
from typing import Any, Callable

from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseUpload

from app_lib.formatters import DocumentSection, SlideContent
from config.settings import Settings, settings
from publishing.base import PublishOutcome

logger = logging.getLogger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/drive",
    "https://www.googleapis.com/auth/documents",
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/presentations",
]

MIME_DOCUMENT = "application/vnd.google-apps.document"
MIME_SPREADSHEET = "application/vnd.google-apps.spreadsheet"
MIME_PRESENTATION = "application/vnd.google-apps.presentation"


class GoogleWorkspacePublisher:
    """Publisher backed by the Google Workspace APIs."""

    def __init__(
        self,
        service_account_file: str | None = None,
        default_folder_id: str | None = None,
    ):
        self.service_account_file = service_account_file
        self.default_folder_id = default_folder_id
        self._services: dict[str, Any] = {}

    @classmethod
    def from_settings(cls, cfg: Settings = settings) -> "GoogleWorkspacePublisher":
        return cls(cfg.google_service_account_file, cfg.google_drive_folder_id)

    @property
    def configured(self) -> bool:
        return bool(self.service_account_file) and os.path.exists(self.service_account_file)

    def _service(self, name: str, version: str) -> Any:
        if name not in self._services:
            creds = service_account.Credentials.from_service_account_file(
                self.service_account_file, scopes=SCOPES,
            )
            self._services[name] = build(name, version, credentials=creds, cache_discovery=False)
        return self._services[name]

    def _create_drive_file(self, title: str, mime_type: str, folder_id: str) -> str:
        file = self._service("drive", "v3").files().create(
            body={"name": title, "mimeType": mime_type, "parents": [folder_id]},
            fields="id",
            supportsAllDrives=True,
        ).execute()
        return file["id"]

    async def _run(
        self,
        label: str,
        title: str,
        folder_id: str | None,
        work: Callable[[str], str],
    ) -> PublishOutcome:
        """Shared precondition checks + thread offload + error classification."""
        if not self.configured:
            return PublishOutcome.skipped("Google service account not configured")
        folder = folder_id or self.default_folder_id
        if not folder:
            return PublishOutcome.skipped("No destination folder configured")

        try:
            file_id = await asyncio.to_thread(work, folder)
        except HttpError as e:
            logger.error(f"Google {label} export failed for '{title}': {e}")
            return PublishOutcome.error(f"Google API error: {e}")
        except Exception as e:
            logger.error(f"Google {label} export failed for '{title}': {e}")
            return PublishOutcome.error(str(e))

        logger.info(f"Created Google {label} {file_id} for '{title}'")
        return PublishOutcome.ok(file_id, f"Created {label} '{title}'")

    # ── Docs ─────────────────────────────────────────────────────

    async def create_document(
        self, title: str, sections: list[DocumentSection], folder_id: str | None = None,
    ) -> PublishOutcome:
        def work(folder: str) -> str:
            doc_id = self._create_drive_file(title, MIME_DOCUMENT, folder)
            text = "".join(f"{s.heading}\n{s.body}\n\n" for s in sections)
            if text:
                self._service("docs", "v1").documents().batchUpdate(
                    documentId=doc_id,
                    body={"requests": [{"insertText": {"location": {"index": 1}, "text": text}}]},
                ).execute()
            return doc_id

        return await self._run("document", title, folder_id, work)

    # ── Sheets ───────────────────────────────────────────────────

    async def create_spreadsheet(
        self, title: str, matrix: list[list[Any]], folder_id: str | None = None,
    ) -> PublishOutcome:
        def work(folder: str) -> str:
            sheet_id = self._create_drive_file(title, MIME_SPREADSHEET, folder)
            if matrix:
                self._service("sheets", "v4").spreadsheets().values().update(
                    spreadsheetId=sheet_id,
                    range="A1",
                    valueInputOption="RAW",
                    body={"values": matrix},
                ).execute()
            return sheet_id

        return await self._run("spreadsheet", title, folder_id, work)

    # ── Slides ───────────────────────────────────────────────────

    async def create_slide_deck(
        self, title: str, slides: list[SlideContent] | None = None, folder_id: str | None = None,
    ) -> PublishOutcome:
        def work(folder: str) -> str:
            deck_id = self._create_drive_file(title, MIME_PRESENTATION, folder)
            requests = []
            for slide in slides or []:
                page_id = f"slide_{uuid.uuid4().hex[:10]}"
                box_id = f"{page_id}_body"
                text = slide.title + "\n" + "\n".join(f"• {b}" for b in slide.bullets)
                requests.extend([
                    {"createSlide": {"objectId": page_id, "slideLayoutReference": {"predefinedLayout": "BLANK"}}},
                    {"createShape": {
                        "objectId": box_id,
                        "shapeType": "TEXT_BOX",
                        "elementProperties": {
                            "pageObjectId": page_id,
                            "size": {
                                "width": {"magnitude": 8_000_000, "unit": "EMU"},
                                "height": {"magnitude": 4_500_000, "unit": "EMU"},
                            },
                            "transform": {
                                "scaleX": 1, "scaleY": 1,
                                "translateX": 500_000, "translateY": 400_000, "unit": "EMU",
                            },
                        },
                    }},
                    {"insertText": {"objectId": box_id, "insertionIndex": 0, "text": text}},
                ])
            if requests:
                self._service("slides", "v1").presentations().batchUpdate(
                    presentationId=deck_id, body={"requests": requests},
                ).execute()
            return deck_id

        return await self._run("slide deck", title, folder_id, work)

    # ── Drive ────────────────────────────────────────────────────

    async def upload_file(
        self, title: str, content: str, mime_type: str = "text/markdown", folder_id: str | None = None,
    ) -> PublishOutcome:
        def work(folder: str) -> str:
            media = MediaIoBaseUpload(io.BytesIO(content.encode("utf-8")), mimetype=mime_type)
            file = self._service("drive", "v3").files().create(
                body={"name": title, "parents": [folder]},
                media_body=media,
                fields="id",
                supportsAllDrives=True,
            ).execute()
            return file["id"]

        return await self._run("file", title, folder_id, work)
