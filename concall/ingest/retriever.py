from __future__ import annotations

import logging
import os
import re
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Protocol

import httpx

from concall.common.errors import DownloadError, EmptyDocumentError
from concall.common.logging import log_event

from .http_transport import BROWSER_USER_AGENT

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r'[<>"|?*\x00-\x1f]')


def sanitize_filename(name: str) -> str:
    s = (name or "").strip()
    s = s.replace(" ", "_").replace("/", "_").replace("\\", "_").replace(":", "-")
    return _UNSAFE_CHARS.sub("_", s)


def document_filename(issuer_name: str, disclosure_date: str) -> str:
    """Deterministic scratch name, e.g. `Acme_Ltd_2025-10-18.pdf`."""
    return f"{sanitize_filename(issuer_name)}_{sanitize_filename(disclosure_date)}.pdf"


class Retriever(Protocol):
    async def fetch(self, attachment_ref: str, dest_dir: Path, *, save_as: str) -> Path: ...


class HttpDocumentRetriever:
    """
    Downloads transcript PDFs from the exchange attachment host.

    The host filters bots, so requests carry a browser user agent and the site referer.
    """

    def __init__(self, *, http: httpx.AsyncClient, base_url: str, referer: str) -> None:
        self._http = http
        self._base_url = base_url if base_url.endswith("/") else base_url + "/"
        self._referer = referer

    async def fetch(self, attachment_ref: str, dest_dir: Path, *, save_as: str) -> Path:
        ref = (attachment_ref or "").strip()
        if not ref:
            raise DownloadError("attachment name is empty")

        url = self._base_url + ref
        headers = {
            "User-Agent": BROWSER_USER_AGENT,
            "Referer": self._referer,
            "Accept": "application/pdf",
        }
        path = Path(dest_dir) / save_as
        try:
            async with self._http.stream("GET", url, headers=headers) as resp:
                if resp.status_code < 200 or resp.status_code >= 300:
                    raise DownloadError(f"failed to download {ref}, status {resp.status_code}")
                path.parent.mkdir(parents=True, exist_ok=True)
                with path.open("wb") as out:
                    async for chunk in resp.aiter_bytes():
                        out.write(chunk)
        except httpx.HTTPError as e:
            raise DownloadError(f"failed to download {ref}: {e}") from e
        except OSError as e:
            raise DownloadError(f"failed to write {path}: {e}") from e

        return path


def ensure_non_empty(path: Path) -> int:
    """Return the file size, raising if the file is missing or zero bytes."""
    try:
        size = os.stat(path).st_size
    except OSError as e:
        raise DownloadError(f"file stat error for {path}: {e}") from e
    if size == 0:
        raise EmptyDocumentError(f"PDF file is empty at {path}")
    return size


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        log_event(logger, "concall_ingest.temp_cleanup_failed", severity="WARNING", path=str(path), error=str(e))


@asynccontextmanager
async def downloaded_document(
    retriever: Retriever,
    attachment_ref: str,
    dest_dir: Path,
    *,
    save_as: str,
) -> AsyncIterator[Path]:
    """
    Download, verify non-empty, yield the local path, and always delete it afterwards.

    The scratch file is removed on every exit path, including a failed size check and
    cancellation of the enclosing task.
    """
    path = Path(dest_dir) / save_as
    try:
        path = await retriever.fetch(attachment_ref, dest_dir, save_as=save_as)
        size = ensure_non_empty(path)
        log_event(logger, "concall_ingest.document_saved", path=str(path), size_bytes=size)
        yield path
    finally:
        _remove_quietly(path)
