"""
Search index gateway.

``SearchIndex`` is what the catalog service talks to. Two
implementations are provided:

* ``MeilisearchIndex``: the production index, through the official
  ``meilisearch`` client. The client is blocking, so every call runs in
  a worker thread.
* ``InMemorySearchIndex``: a process-local stand-in that applies the
  same ``BookFilter``/``SortDirective`` objects to stored documents.
  Used for local development and tests.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

import meilisearch
from meilisearch.errors import (
    MeilisearchApiError,
    MeilisearchCommunicationError,
    MeilisearchTimeoutError,
)
from typing_extensions import Protocol

from ..errors import UpstreamUnavailableError
from .filters import BookFilter, SortDirective


logger = logging.getLogger(__name__)


@dataclass
class SearchPage:
    hits: List[Dict[str, Any]] = field(default_factory=list)
    estimated_total_hits: int = 0


class SearchIndex(Protocol):
    async def search(
        self,
        query: str,
        *,
        limit: int,
        offset: int,
        book_filter: Optional[BookFilter] = None,
        sort: Sequence[SortDirective] = (),
    ) -> SearchPage: ...

    async def update_documents(self, documents: Sequence[Mapping[str, Any]]) -> None: ...

    async def update_settings(self, settings: Mapping[str, Any]) -> None: ...


class MeilisearchIndex:
    def __init__(
        self,
        client: meilisearch.Client,
        index_name: str = "books",
    ) -> None:
        self._client = client
        self._index_name = index_name

    @classmethod
    def from_url(
        cls, url: str, api_key: Optional[str] = None, index_name: str = "books", timeout: Optional[float] = None
    ) -> "MeilisearchIndex":
        timeout_arg = int(timeout) if timeout else None
        return cls(meilisearch.Client(url, api_key, timeout=timeout_arg), index_name)

    @property
    def _index(self):
        return self._client.index(self._index_name)

    async def search(
        self,
        query: str,
        *,
        limit: int,
        offset: int,
        book_filter: Optional[BookFilter] = None,
        sort: Sequence[SortDirective] = (),
    ) -> SearchPage:
        params: Dict[str, Any] = {"limit": limit, "offset": offset}
        expression = book_filter.to_expression() if book_filter else None
        if expression:
            params["filter"] = expression
        if sort:
            params["sort"] = [s.to_expression() for s in sort]
        try:
            result = await asyncio.to_thread(self._index.search, query, params)
        except MeilisearchApiError as exc:
            if exc.code == "index_not_found":
                logger.info("Index %s does not exist yet; treating as empty", self._index_name)
                return SearchPage()
            raise UpstreamUnavailableError(f"Search index query failed: {exc}") from exc
        except (MeilisearchCommunicationError, MeilisearchTimeoutError) as exc:
            raise UpstreamUnavailableError(f"Search index unreachable: {exc}") from exc
        hits = result.get("hits") or []
        total = result.get("estimatedTotalHits")
        return SearchPage(hits=hits, estimated_total_hits=total if total is not None else len(hits))

    async def update_documents(self, documents: Sequence[Mapping[str, Any]]) -> None:
        try:
            await asyncio.to_thread(self._index.update_documents, [dict(d) for d in documents], "id")
        except (MeilisearchApiError, MeilisearchCommunicationError, MeilisearchTimeoutError) as exc:
            raise UpstreamUnavailableError(f"Search index write failed: {exc}") from exc

    async def update_settings(self, settings: Mapping[str, Any]) -> None:
        try:
            await asyncio.to_thread(self._index.update_settings, dict(settings))
        except (MeilisearchApiError, MeilisearchCommunicationError, MeilisearchTimeoutError) as exc:
            raise UpstreamUnavailableError(f"Search index settings update failed: {exc}") from exc


def _searchable_text(document: Mapping[str, Any], attributes: Sequence[str]) -> str:
    parts: List[str] = []
    for attr in attributes:
        value = document.get(attr)
        if isinstance(value, list):
            parts.extend(str(v) for v in value)
        elif value:
            parts.append(str(value))
    return " ".join(parts).lower()


def _sort_key(value: Any) -> tuple:
    # Missing values sort before present ones.
    if value is None or value == "":
        return (0,)
    return (1, value)


class InMemorySearchIndex:
    """Dictionary-backed index with substring matching.

    Every whitespace-separated query word must appear in one of the
    searchable attributes. Hits come back in insertion order unless a
    sort is given.
    """

    DEFAULT_SEARCHABLE = ("title", "subtitle", "primaryAuthor", "authorNames", "description")

    def __init__(self) -> None:
        self.documents: Dict[str, Dict[str, Any]] = {}
        self.settings: Dict[str, Any] = {}

    async def search(
        self,
        query: str,
        *,
        limit: int,
        offset: int,
        book_filter: Optional[BookFilter] = None,
        sort: Sequence[SortDirective] = (),
    ) -> SearchPage:
        searchable = self.settings.get("searchableAttributes") or self.DEFAULT_SEARCHABLE
        words = (query or "").lower().split()
        matched = []
        for doc in self.documents.values():
            if book_filter is not None and not book_filter.matches(doc):
                continue
            text = _searchable_text(doc, searchable)
            if all(w in text for w in words):
                matched.append(doc)
        # Stable sorts applied last-to-first give multi-key ordering.
        for directive in reversed(list(sort)):
            matched.sort(key=lambda d, f=directive.field: _sort_key(d.get(f)), reverse=directive.descending)
        return SearchPage(
            hits=[dict(d) for d in matched[offset:offset + limit]],
            estimated_total_hits=len(matched),
        )

    async def update_documents(self, documents: Sequence[Mapping[str, Any]]) -> None:
        for doc in documents:
            self.documents[str(doc["id"])] = dict(doc)

    async def update_settings(self, settings: Mapping[str, Any]) -> None:
        self.settings = dict(settings)
