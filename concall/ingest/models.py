from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

NA_SENTINEL = "NA"


class Announcement(BaseModel):
    """
    One disclosure row from the exchange feed (read-only).

    Field aliases are the feed's wire names; unknown wire fields are ignored.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    news_id: str = Field(default="", alias="NEWSID")
    scrip_code: Optional[int] = Field(default=None, alias="SCRIP_CD")
    issuer_name: str = Field(default="", alias="SLONGNAME")
    headline: str = Field(default="", alias="HEADLINE")
    news_date: str = Field(default="", alias="NEWS_DT")
    attachment_name: str = Field(default="", alias="ATTACHMENTNAME")
    category: str = Field(default="", alias="CATEGORYNAME")
    subcategory: str = Field(default="", alias="SUBCATNAME")
    pdf_flag: Optional[int] = Field(default=None, alias="PDFFLAG")

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        # The feed sends explicit nulls for absent strings.
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data

    @property
    def has_attachment(self) -> bool:
        return bool(self.attachment_name.strip())

    @property
    def disclosure_date(self) -> str:
        # Feed timestamps look like "2025-10-18T19:42:10.36"; keep the date part.
        return self.news_date.split("T", 1)[0]


class FeedEnvelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    table: list[Announcement] = Field(default_factory=list, alias="Table")
    row_counts: list[dict[str, Any]] = Field(default_factory=list, alias="Table1")

    @property
    def row_count(self) -> int | None:
        if not self.row_counts:
            return None
        try:
            return int(self.row_counts[0].get("ROWCNT"))
        except (TypeError, ValueError):
            return None


@dataclass(frozen=True)
class DateRange:
    start: date
    end: date

    def feed_params(self) -> tuple[str, str]:
        return self.start.strftime("%Y%m%d"), self.end.strftime("%Y%m%d")


@dataclass(frozen=True)
class GuidanceRecord:
    issuer_name: str
    disclosure_date: str
    guidance_text: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.issuer_name,
            "date": self.disclosure_date,
            "guidance": self.guidance_text,
            "created_at": self.created_at.isoformat(),
        }


PipelineStatus = Literal["empty", "noop", "processed", "persist_failed"]


@dataclass
class PipelineResult:
    """
    Per-invocation outcome of one ingestion run. Never persisted.

    status:
    - empty: the feed returned nothing for the range
    - noop: every candidate was already stored
    - processed: enrichment ran and the produced records were saved
    - persist_failed: records were produced but the bulk insert failed
    """

    status: PipelineStatus = "processed"
    fetched: int = 0
    after_dedup: int = 0
    enriched: int = 0
    skipped: int = 0
    errored: int = 0
    records: list[GuidanceRecord] = field(default_factory=list)
    error: str | None = None

    @property
    def unsaved(self) -> int:
        return len(self.records) if self.status == "persist_failed" else 0

    def counts(self) -> dict[str, int]:
        return {
            "fetched": self.fetched,
            "after_dedup": self.after_dedup,
            "enriched": self.enriched,
            "skipped": self.skipped,
            "errored": self.errored,
        }
