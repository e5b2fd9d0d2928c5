import asyncio
from types import SimpleNamespace

import pytest

from concall.common.errors import EnrichmentError, RetriesExhaustedError
from concall.enrichment.gemini_client import (
    NO_RESPONSE_TEXT,
    GeminiEnrichmentClient,
    extract_guidance_text,
    guidance_prompt,
)
from tests._fakes import _Recorder


class _ApiError(Exception):
    def __init__(self, code: int) -> None:
        super().__init__(f"{code} upstream")
        self.code = code


def _resp(*texts_per_candidate):
    return SimpleNamespace(
        candidates=[
            SimpleNamespace(content=SimpleNamespace(parts=[SimpleNamespace(text=t) for t in texts]))
            for texts in texts_per_candidate
        ]
    )


class _FakeFiles:
    def __init__(self, *, upload_failures=(), delete_exc=None):
        self.upload_failures = list(upload_failures)
        self.delete_exc = delete_exc
        self.uploaded = []
        self.deleted = []

    async def upload(self, *, file, config=None):
        if self.upload_failures:
            raise self.upload_failures.pop(0)
        self.uploaded.append(file)
        return SimpleNamespace(name="files/abc123", uri="https://files.example/abc123", mime_type="application/pdf")

    async def delete(self, *, name):
        self.deleted.append(name)
        if self.delete_exc is not None:
            raise self.delete_exc


class _FakeModels:
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    async def generate_content(self, *, model, contents):
        self.calls.append((model, contents))
        out = self.outcomes.pop(0)
        if isinstance(out, Exception):
            raise out
        return out


def _client(files, models):
    return SimpleNamespace(aio=SimpleNamespace(files=files, models=models))


def _pdf(tmp_path):
    p = tmp_path / "Acme_Ltd_2025-10-18.pdf"
    p.write_bytes(b"%PDF-1.4")
    return p


def test_extract_guidance_text_joins_parts_and_trims():
    assert extract_guidance_text(_resp(["  Revenue growth ", "of 12-15% "])) == "Revenue growth \nof 12-15%"
    assert extract_guidance_text(_resp(["NA"])) == "NA"


def test_extract_guidance_text_without_candidates():
    assert extract_guidance_text(SimpleNamespace(candidates=[])) == NO_RESPONSE_TEXT
    assert extract_guidance_text(SimpleNamespace(candidates=None)) == NO_RESPONSE_TEXT


def test_extract_guidance_text_skips_non_text_parts():
    resp = SimpleNamespace(
        candidates=[SimpleNamespace(content=SimpleNamespace(parts=[SimpleNamespace(text=None), SimpleNamespace(text="EPS 40")]))]
    )
    assert extract_guidance_text(resp) == "EPS 40"


def test_guidance_prompt_mentions_fiscal_year_and_sentinel():
    p = guidance_prompt("FY26")
    assert "fy26" in p
    assert '"NA"' in p


def test_summarize_uploads_generates_and_deletes(tmp_path):
    files = _FakeFiles()
    models = _FakeModels([_resp(["Revenue growth of 12-15%"])])
    c = GeminiEnrichmentClient(client=_client(files, models), model="gemini-test", fiscal_year="fy26")

    out = asyncio.run(c.summarize(_pdf(tmp_path)))

    assert out == "Revenue growth of 12-15%"
    assert files.uploaded == [str(tmp_path / "Acme_Ltd_2025-10-18.pdf")]
    assert files.deleted == ["files/abc123"]
    model, contents = models.calls[0]
    assert model == "gemini-test"
    assert contents[1] == guidance_prompt("fy26")


def test_summarize_survives_three_rate_limits(tmp_path):
    sleep = _Recorder()
    files = _FakeFiles()
    models = _FakeModels([_ApiError(429), _ApiError(429), _ApiError(429), _resp(["Revenue growth of 12-15%"])])
    c = GeminiEnrichmentClient(client=_client(files, models), sleep=sleep, rng=lambda: 0.0)

    assert asyncio.run(c.summarize(_pdf(tmp_path))) == "Revenue growth of 12-15%"
    assert len(sleep.delays) == 3
    assert files.deleted == ["files/abc123"]


def test_summarize_retries_upload_separately(tmp_path):
    sleep = _Recorder()
    files = _FakeFiles(upload_failures=[_ApiError(503)])
    models = _FakeModels([_resp(["EPS growth 20%"])])
    c = GeminiEnrichmentClient(client=_client(files, models), sleep=sleep, rng=lambda: 0.0)

    assert asyncio.run(c.summarize(_pdf(tmp_path))) == "EPS growth 20%"
    assert sleep.delays == pytest.approx([0.1])
    assert len(models.calls) == 1


def test_summarize_deletes_remote_file_when_generation_fails(tmp_path):
    files = _FakeFiles()
    models = _FakeModels([_ApiError(400)])
    c = GeminiEnrichmentClient(client=_client(files, models), sleep=_Recorder())

    with pytest.raises(EnrichmentError):
        asyncio.run(c.summarize(_pdf(tmp_path)))
    assert files.deleted == ["files/abc123"]


def test_summarize_exhausts_on_persistent_overload(tmp_path):
    files = _FakeFiles()
    models = _FakeModels([_ApiError(503)] * 5)
    c = GeminiEnrichmentClient(client=_client(files, models), sleep=_Recorder())

    with pytest.raises(RetriesExhaustedError):
        asyncio.run(c.summarize(_pdf(tmp_path)))
    assert files.deleted == ["files/abc123"]


def test_remote_delete_failure_does_not_hide_the_result(tmp_path):
    files = _FakeFiles(delete_exc=RuntimeError("delete failed"))
    models = _FakeModels([_resp(["NA"])])
    c = GeminiEnrichmentClient(client=_client(files, models))

    assert asyncio.run(c.summarize(_pdf(tmp_path))) == "NA"


def test_constructor_requires_key_without_client():
    with pytest.raises(ValueError):
        GeminiEnrichmentClient(api_key=None)
