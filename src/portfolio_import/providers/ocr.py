"""Screenshot-to-table extraction through the OCR service."""

from __future__ import annotations

from pathlib import Path
from typing import Any, BinaryIO, Protocol

import requests

from portfolio_import.config.settings import get_settings
from portfolio_import.errors import ImportFileError
from portfolio_import.ingest.tables import SOURCE_OCR, RawTable, build_table
from portfolio_import.providers.http import JsonFetcher, request_json
from portfolio_import.utils.logging import get_logger

logger = get_logger(__name__)

IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg", ".webp", ".heic"}


class TableExtractor(Protocol):
    def extract(self, image: bytes, file_name: str) -> RawTable: ...


def _read_binary_payload(file_obj: str | Path | BinaryIO | bytes) -> bytes:
    if isinstance(file_obj, bytes):
        return file_obj
    if isinstance(file_obj, (str, Path)):
        return Path(file_obj).read_bytes()
    if hasattr(file_obj, "read"):
        payload = file_obj.read()
        if isinstance(payload, str):
            return payload.encode("utf-8", errors="ignore")
        return payload
    raise TypeError("Unsupported image input type.")


def table_from_payload(payload: Any, *, file_name: str | None = None) -> RawTable:
    if not isinstance(payload, dict):
        raise ImportFileError("Screenshot extraction returned an unexpected response.")
    headers = payload.get("headers") or []
    rows = payload.get("rows") or []
    if not isinstance(headers, list) or not headers:
        raise ImportFileError("No table was found in the screenshot.")
    if not isinstance(rows, list):
        raise ImportFileError("Screenshot extraction returned an unexpected response.")
    return build_table(headers, rows, source=SOURCE_OCR, file_name=file_name)


class OcrClient:
    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout_seconds: float | None = None,
        fetcher: JsonFetcher | None = None,
    ) -> None:
        settings = get_settings()
        self.base_url = base_url or settings.ocr_service_url
        self.timeout_seconds = timeout_seconds or settings.http_timeout_seconds
        self.fetcher = fetcher or request_json

    def extract(self, image: str | Path | BinaryIO | bytes, file_name: str = "screenshot.png") -> RawTable:
        if not self.base_url:
            raise ImportFileError("Screenshot import is not configured (OCR_SERVICE_URL).")
        if Path(file_name).suffix.lower() not in IMAGE_SUFFIXES:
            raise ImportFileError("Please upload a PNG, JPEG, WEBP or HEIC screenshot.")

        payload = _read_binary_payload(image)
        if not payload:
            raise ImportFileError("The screenshot is empty.")
        try:
            response = self.fetcher(
                "POST",
                f"{self.base_url}/extract-table",
                timeout_seconds=self.timeout_seconds,
                files={"image": (file_name, payload)},
            )
        except requests.RequestException as exc:
            logger.warning("OCR extraction failed for %s: %s", file_name, exc)
            raise ImportFileError(f"Screenshot extraction failed: {exc}") from exc

        table = table_from_payload(response, file_name=file_name)
        logger.info("OCR extracted %s rows from %s", table.row_count, file_name)
        return table
