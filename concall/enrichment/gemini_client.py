from __future__ import annotations

import asyncio
import logging
import random
from pathlib import Path
from typing import Any, Awaitable, Callable, Protocol

from concall.common.logging import log_event

from .retry_policy import BASE_DELAY_S, MAX_ATTEMPTS, call_with_retry

logger = logging.getLogger(__name__)

PDF_MIME_TYPE = "application/pdf"
NO_RESPONSE_TEXT = "(no response)"


def guidance_prompt(fiscal_year: str) -> str:
    fy = fiscal_year.strip().lower()
    return (
        f"Go through the concall and identify if management has given any guidance for {fy} on the future "
        f"growth of the company in terms of revenue, earnings, eps etc. If yes, then just return the {fy}' "
        f"guidance after quantifying it and return nothing else. If no guidance is provided, then return \"NA\". "
        f"Your response should be just 1 line providing the guidance for {fy}' in numbers otherwise NA."
    )


class Enrichment(Protocol):
    async def summarize(self, file_path: Path) -> str: ...


def extract_guidance_text(resp: Any) -> str:
    """
    Concatenate the text segments of every candidate and trim.

    No candidates at all yields "(no response)" rather than an error.
    """
    candidates = getattr(resp, "candidates", None) or []
    if not candidates:
        return NO_RESPONSE_TEXT

    chunks: list[str] = []
    for cand in candidates:
        content = getattr(cand, "content", None)
        for part in getattr(content, "parts", None) or []:
            text = getattr(part, "text", None)
            if text:
                chunks.append(text)
    return "\n".join(chunks).strip()


def _new_genai_client(api_key: str) -> Any:
    from google import genai  # noqa: WPS433

    return genai.Client(api_key=api_key)


class GeminiEnrichmentClient:
    """
    Upload -> single fixed prompt -> parse -> delete, against the Gemini API.

    Upload and generation are each wrapped in the transient-error retry policy.
    Deleting the remote file is best-effort.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str = "gemini-2.5-flash",
        fiscal_year: str = "fy26",
        client: Any = None,
        max_attempts: int = MAX_ATTEMPTS,
        base_delay_s: float = BASE_DELAY_S,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        if client is None:
            if not api_key:
                raise ValueError("api_key is required when no client is supplied")
            client = _new_genai_client(api_key)
        self._client = client
        self._model = model
        self._prompt = guidance_prompt(fiscal_year)
        self._retry_kwargs: dict[str, Any] = {
            "max_attempts": max_attempts,
            "base_delay_s": base_delay_s,
            "sleep": sleep,
            "rng": rng,
        }

    async def summarize(self, file_path: Path) -> str:
        from google.genai import types  # noqa: WPS433

        aio = self._client.aio
        remote = await call_with_retry(
            lambda: aio.files.upload(file=str(file_path), config=types.UploadFileConfig(mime_type=PDF_MIME_TYPE)),
            op="gemini.upload",
            **self._retry_kwargs,
        )
        log_event(logger, "enrichment.uploaded", remote_name=remote.name, mime_type=remote.mime_type)

        try:
            document = types.Part.from_uri(file_uri=remote.uri, mime_type=remote.mime_type or PDF_MIME_TYPE)
            resp = await call_with_retry(
                lambda: aio.models.generate_content(model=self._model, contents=[document, self._prompt]),
                op="gemini.generate",
                **self._retry_kwargs,
            )
            return extract_guidance_text(resp)
        finally:
            await self._delete_remote(remote.name)

    async def _delete_remote(self, name: str) -> None:
        try:
            await self._client.aio.files.delete(name=name)
        except Exception as e:
            log_event(logger, "enrichment.remote_delete_failed", severity="WARNING", remote_name=name, error=str(e))
