"""
Catalog service: tiered book lookup, promotion and re-indexing.

A search walks three tiers in order and stops at the first that
returns something:

1. the search index (cache), with the compiled filter and sort;
2. the canonical store, by case-insensitive title substring, only when
   the caller gave a non-blank query;
3. Open Library, one query word at a time until a word returns docs.

Books found in Open Library are promoted: upserted into the canonical
store by their external identity, re-encoded with fresh counters and
written back to the index, so the next identical search is served from
tier 1. By default only the first external book is promoted per call
(``promote_all_external_results`` lifts that).

Activity counters are never stored on the book; they are counted from
the reaction/status tables every time a book is hydrated or indexed.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Iterable, List, Optional, Tuple

from ..errors import NotFoundError, UpstreamUnavailableError
from ..models import (
    ActivityCounters,
    Book,
    BookRow,
    ReactionType,
    ReadingStatus,
    UserBookReaction,
    UserBookStatus,
)
from . import documents
from .filters import BookFilter, compile_query
from .openlibrary_service import OpenLibraryService
from .schemas import (
    SearchBooksRequest,
    SearchBooksResponse,
    UpsertAuthor,
    UpsertBookRequest,
    UpsertBookResponse,
    UpsertGenre,
)
from .search_index import SearchIndex
from .store import CatalogStore
from .upsert import BookUpserter


logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 20
MAX_LIMIT = 100


async def first_successful_word(
    words: Iterable[str],
    fetch: Callable[[str], Awaitable[List[Book]]],
) -> Tuple[Optional[str], List[Book]]:
    """Try ``fetch`` on each word in order and stop at the first non-empty result.

    Results of different words are never merged. A word whose fetch
    raises ``UpstreamUnavailableError`` is skipped, so a full outage
    ends as ``(None, [])`` instead of an error.
    """
    for word in words:
        try:
            books = await fetch(word)
        except UpstreamUnavailableError as exc:
            logger.warning("External search for %r failed, trying next word: %s", word, exc)
            continue
        if books:
            return word, books
    return None, []


def effective_limit(
    limit: Optional[int], default: int = DEFAULT_LIMIT, maximum: int = MAX_LIMIT
) -> int:
    # Unset and 0 both mean "use the default".
    if not limit:
        return default
    return max(0, min(limit, maximum))


def effective_offset(offset: Optional[int]) -> int:
    return max(0, offset or 0)


def promotion_request(book: Book) -> UpsertBookRequest:
    """Build the upsert that turns an external hit into a canonical book."""
    return UpsertBookRequest(
        id=book.id,
        title=book.title,
        subtitle=book.subtitle,
        description=book.description,
        language=book.language,
        published_year=book.published_year,
        cover_image_url=book.cover_image_url,
        external_source=book.external_source,
        external_id=book.external_id,
        authors=[
            UpsertAuthor(
                id=a.id,
                name=a.name,
                sort_name=a.sort_name,
                external_source=a.external_source,
                external_id=a.external_id,
                role="",
                position=i,
            )
            for i, a in enumerate(book.authors)
        ],
        genres=[
            UpsertGenre(id=g.id, name=g.name, slug=g.slug, confidence=0)
            for g in book.genres
        ],
        reindex_search_document=True,
    )


class CatalogService:
    def __init__(
        self,
        store: CatalogStore,
        index: SearchIndex,
        external: OpenLibraryService,
        *,
        default_limit: int = DEFAULT_LIMIT,
        max_limit: int = MAX_LIMIT,
        promote_all_external_results: bool = False,
    ) -> None:
        self.store = store
        self.index = index
        self.external = external
        self.upserter = BookUpserter(store)
        self.default_limit = default_limit
        self.max_limit = max_limit
        self.promote_all_external_results = promote_all_external_results

    async def ensure_index_settings(self) -> None:
        """Push index settings; a failure is logged and left for later writes to heal."""
        try:
            await self.index.update_settings(documents.BOOKS_INDEX_SETTINGS)
        except UpstreamUnavailableError as exc:
            logger.warning("Could not apply search index settings: %s", exc)

    # Search

    async def search_books(self, request: SearchBooksRequest) -> SearchBooksResponse:
        limit = effective_limit(request.limit, self.default_limit, self.max_limit)
        offset = effective_offset(request.offset)
        query = request.query or ""
        book_filter, sort = compile_query(request)

        page = await self.index.search(
            query, limit=limit, offset=offset, book_filter=book_filter, sort=sort
        )
        if page.hits:
            books = [documents.decode(hit) for hit in page.hits]
            return SearchBooksResponse(books=books, total=page.estimated_total_hits)

        total = page.estimated_total_hits
        # A zero-size page can never be filled by a later tier.
        if limit == 0 or not query.strip():
            return SearchBooksResponse(books=[], total=total)

        logger.info("Index miss for %r, searching the database", query)
        books = await self._search_database(query, book_filter, limit, offset)
        if books:
            return SearchBooksResponse(books=books, total=max(total, len(books)))

        logger.info("Database miss for %r, falling back to Open Library", query)
        word, external = await first_successful_word(query.split(), self.external.search_books)
        books = external[:limit]
        for i, book in enumerate(books):
            if book.external_source is None or not book.external_id:
                continue
            total += 1
            books[i] = await self._promote(book)
            if not self.promote_all_external_results:
                break
        if word is not None:
            logger.info("Open Library returned %d books for %r", len(books), word)
        return SearchBooksResponse(books=books, total=total)

    async def _search_database(
        self, query: str, book_filter: BookFilter, limit: int, offset: int
    ) -> List[Book]:
        rows = await self.store.search_books(query, book_filter, limit=limit, offset=offset)
        return [await self._hydrate(row, include_stats=True) for row in rows]

    async def _promote(self, book: Book) -> Book:
        response = await self.upsert_book(promotion_request(book))
        logger.info(
            "Promoted %s %s as book %s (created=%s)",
            book.external_source.value if book.external_source else "external",
            book.external_id,
            response.book.id,
            response.created,
        )
        return response.book

    # Books

    async def get_book(self, book_id: str, include_stats: bool = True) -> Book:
        row = await self.store.get_book(book_id)
        if row is None:
            raise NotFoundError(f"Book {book_id} not found")
        return await self._hydrate(row, include_stats=include_stats)

    async def upsert_book(self, request: UpsertBookRequest) -> UpsertBookResponse:
        result = await self.upserter.upsert(request)
        if request.reindex_search_document:
            await self.index_book(result.row.id)
        book = await self.get_book(result.row.id)
        return UpsertBookResponse(book=book, created=result.created)

    async def index_book(self, book_id: str) -> None:
        """Replace the search document of ``book_id`` with a fresh encoding."""
        row = await self.store.get_book(book_id)
        if row is None:
            return
        book = await self._hydrate(row, include_stats=True)
        await self.index.update_documents([documents.encode(book)])

    async def compute_counters(self, book_id: str) -> ActivityCounters:
        likes, dislikes, want, reading, read, dnf = await asyncio.gather(
            self.store.count_reactions(book_id, ReactionType.LIKE),
            self.store.count_reactions(book_id, ReactionType.DISLIKE),
            self.store.count_statuses(book_id, ReadingStatus.WANT),
            self.store.count_statuses(book_id, ReadingStatus.READING),
            self.store.count_statuses(book_id, ReadingStatus.READ),
            self.store.count_statuses(book_id, ReadingStatus.DNF),
        )
        return ActivityCounters(
            like_count=likes,
            dislike_count=dislikes,
            want_count=want,
            reading_count=reading,
            read_count=read,
            dnf_count=dnf,
        )

    async def _hydrate(self, row: BookRow, include_stats: bool) -> Book:
        authors = await self.store.list_book_authors(row.id)
        genres = await self.store.list_book_genres(row.id)
        counters = await self.compute_counters(row.id) if include_stats else ActivityCounters()
        author_names = [a.name for a in authors]
        return Book(
            **row.model_dump(),
            **counters.model_dump(),
            authors=authors,
            genres=genres,
            primary_author=author_names[0] if author_names else "",
            author_names=author_names,
            genre_slugs=[g.slug for g in genres],
        )

    # Activity

    async def set_reaction(
        self, user_id: str, book_id: str, reaction: ReactionType
    ) -> UserBookReaction:
        record = await self.store.upsert_reaction(user_id, book_id, reaction)
        await self.index_book(book_id)
        return record

    async def set_status(
        self,
        user_id: str,
        book_id: str,
        status: ReadingStatus,
        started_at: Optional[datetime] = None,
        finished_at: Optional[datetime] = None,
    ) -> UserBookStatus:
        record = await self.store.upsert_status(
            user_id, book_id, status, started_at=started_at, finished_at=finished_at
        )
        await self.index_book(book_id)
        return record

    async def close(self) -> None:
        await self.external.close()
