from __future__ import annotations

import logging
import re
from typing import Iterable, Protocol

from subscout.itad import SearchHit
from subscout.models import MatchCandidate

logger = logging.getLogger(__name__)

MIN_SCORE = 50
_GLYPHS_RE = re.compile("[®™©]")
_NON_ALNUM_RE = re.compile(r"[^a-zA-Z0-9\s]")
_SPACE_RE = re.compile(r"\s+")


class SearchClient(Protocol):
    async def search(self, title: str, limit: int = 5) -> list[SearchHit]: ...


def normalize_title(title: str) -> str:
    text = _GLYPHS_RE.sub("", title or "")
    text = _NON_ALNUM_RE.sub("", text)
    return _SPACE_RE.sub(" ", text).strip().casefold()


def score_candidate(local: str, external: str) -> int:
    """Score an external title against a local one. Both must be normalized.

    Returns 0 when neither title contains the other.
    """
    if not local or not external:
        return 0
    diff = abs(len(external) - len(local))
    if external == local:
        return 100
    if external.startswith(local):
        return max(0, 80 - min(40, diff))
    if local in external:
        return max(0, 30 - min(20, diff))
    if external in local:
        return max(0, 70 - min(40, diff))
    return 0


def select_candidates(local_title: str, hits: Iterable[SearchHit], min_score: int = MIN_SCORE) -> list[MatchCandidate]:
    local = normalize_title(local_title)
    if not local:
        return []
    scored: list[MatchCandidate] = []
    for hit in hits:
        normalized = normalize_title(hit.title)
        score = score_candidate(local, normalized)
        if score >= min_score:
            scored.append(MatchCandidate(external_id=hit.id, normalized_title=normalized, score=score))

    scored.sort(key=lambda c: (-c.score, -len(c.normalized_title)))
    seen: set[str] = set()
    ordered: list[MatchCandidate] = []
    for candidate in scored:
        if candidate.external_id in seen:
            continue
        seen.add(candidate.external_id)
        ordered.append(candidate)
    return ordered


class CatalogMatcher:
    def __init__(self, client: SearchClient, limit: int = 5, min_score: int = MIN_SCORE) -> None:
        self._client = client
        self._limit = limit
        self._min_score = min_score

    async def match(self, title: str) -> list[MatchCandidate]:
        if not normalize_title(title):
            return []
        hits = await self._client.search(title, limit=self._limit)
        candidates = select_candidates(title, hits, self._min_score)
        logger.debug("Matched %r to %s", title, [c.external_id for c in candidates])
        return candidates
