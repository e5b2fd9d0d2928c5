from __future__ import annotations

import logging
from typing import AbstractSet, Protocol, Sequence

from .models import Announcement

logger = logging.getLogger(__name__)


class ExistingNamesLookup(Protocol):
    async def existing_names(self, names: Sequence[str]) -> set[str]: ...


def filter_new_announcements(
    announcements: Sequence[Announcement],
    existing: AbstractSet[str],
) -> list[Announcement]:
    """
    Keep announcements whose issuer name is not already stored.

    Names are compared exactly (case-sensitive, no normalization); order is preserved.
    """
    kept: list[Announcement] = []
    for a in announcements:
        if a.issuer_name in existing:
            logger.debug("concall_ingest.dedup_skip name=%s", a.issuer_name)
            continue
        kept.append(a)
    return kept


async def dedup_against_store(
    announcements: Sequence[Announcement],
    lookup: ExistingNamesLookup,
) -> list[Announcement]:
    """One batched existence lookup for the whole candidate set, then a pure filter."""
    if not announcements:
        return []
    names = list(dict.fromkeys(a.issuer_name for a in announcements))
    existing = await lookup.existing_names(names)
    return filter_new_announcements(announcements, existing)
