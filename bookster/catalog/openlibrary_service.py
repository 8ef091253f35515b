"""
Open Library integration for the catalogue.

``OpenLibraryService.search_books()`` runs an anonymous free-text
search against ``https://openlibrary.org/search.json`` and maps each
returned doc onto the canonical ``Book`` shape with
``openlibrary_to_book()``.

The service does not retry and does not swallow errors: a transport
failure, timeout or non-2xx status raises ``UpstreamUnavailableError``
and the caller decides what to do with it. An empty ``docs`` list is
a normal, empty result.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from ..errors import UpstreamUnavailableError
from ..models import Author, Book, ExternalSource


logger = logging.getLogger(__name__)

OPEN_LIBRARY_SEARCH_URL = "https://openlibrary.org/search.json"
OPEN_LIBRARY_COVER_URL = "https://covers.openlibrary.org/b/id"


def _convert_language(code: str) -> Optional[str]:
    """Convert a three-letter ISO 639-2 code to a two-letter code.

    Unknown codes are cut to their first two characters. ``None`` is
    returned for an empty code.
    """
    if not code:
        return None
    code = code.lower()
    if len(code) == 2:
        return code
    mapping = {
        'eng': 'en', 'fre': 'fr', 'fra': 'fr', 'spa': 'es', 'ita': 'it',
        'por': 'pt', 'ger': 'de', 'deu': 'de', 'rus': 'ru', 'jpn': 'ja',
        'chi': 'zh', 'zho': 'zh', 'kor': 'ko', 'tur': 'tr', 'ara': 'ar',
        'hin': 'hi', 'urd': 'ur', 'per': 'fa', 'fas': 'fa', 'pes': 'fa',
        'dan': 'da', 'nor': 'no', 'nob': 'no', 'fin': 'fi', 'swe': 'sv',
        'bul': 'bg', 'rum': 'ro', 'ron': 'ro', 'ukr': 'uk', 'vie': 'vi',
        'cat': 'ca', 'lat': 'la', 'heb': 'he', 'gre': 'el', 'ell': 'el',
        'hun': 'hu', 'ice': 'is', 'isl': 'is', 'hrv': 'hr', 'gle': 'ga',
        'dut': 'nl', 'nld': 'nl', 'pol': 'pl', 'cze': 'cs', 'ces': 'cs',
        'wel': 'cy', 'cym': 'cy',
    }
    return mapping.get(code, code[:2])


def _build_cover_url(cover_id: Any) -> Optional[str]:
    if isinstance(cover_id, int) and cover_id:
        return f"{OPEN_LIBRARY_COVER_URL}/{cover_id}-M.jpg"
    return None


def canonical_id(key: str) -> str:
    """Derive a book id from an Open Library key.

    ``/works/OL45883W`` becomes ``ol-OL45883W``. Index document ids only
    allow letters, digits, ``-`` and ``_``.
    """
    tail = key.rstrip("/").split("/")[-1]
    return "ol-" + re.sub(r"[^A-Za-z0-9_-]", "-", tail)


def openlibrary_to_book(doc: Dict[str, Any]) -> Optional[Book]:
    """Map one ``search.json`` doc to a Book, or ``None`` without a key."""
    key = doc.get("key")
    if not key or not isinstance(key, str):
        return None
    now = datetime.now(timezone.utc)
    names = [n for n in doc.get("author_name") or [] if isinstance(n, str)]
    keys = doc.get("author_key") or []
    authors: List[Author] = []
    for i, name in enumerate(names):
        author_key = keys[i] if i < len(keys) and isinstance(keys[i], str) else ""
        authors.append(
            Author(
                id=author_key or f"ol-author-{i}",
                name=name,
                sort_name=name,
                external_source=ExternalSource.OPEN_LIBRARY,
                external_id=author_key or None,
                created_at=now,
                updated_at=now,
            )
        )
    year = doc.get("first_publish_year")
    codes = doc.get("language") or []
    return Book(
        id=canonical_id(key),
        title=str(doc.get("title") or doc.get("title_suggest") or ""),
        published_year=year if isinstance(year, int) and year > 0 else None,
        cover_image_url=_build_cover_url(doc.get("cover_i")),
        language=_convert_language(codes[0]) if codes and isinstance(codes[0], str) else None,
        external_source=ExternalSource.OPEN_LIBRARY,
        external_id=key,
        authors=authors,
        primary_author=names[0] if names else "",
        author_names=names,
        created_at=now,
        updated_at=now,
    )


class OpenLibraryService:
    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        *,
        base_url: str = OPEN_LIBRARY_SEARCH_URL,
        user_agent: str = "Bookster (catalog service)",
        timeout: float = 10.0,
        limit: Optional[int] = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._base_url = base_url
        self._headers = {"User-Agent": user_agent, "Accept": "application/json"}
        self._limit = limit

    async def search_books(self, query: str) -> List[Book]:
        params: Dict[str, Any] = {"q": query}
        if self._limit:
            params["limit"] = self._limit
        logger.info("Searching Open Library for %r", query)
        try:
            response = await self._client.get(self._base_url, params=params, headers=self._headers)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            logger.error("Open Library returned %s for %r", exc.response.status_code, query)
            raise UpstreamUnavailableError(
                f"Open Library search failed with status {exc.response.status_code}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Error searching Open Library for %r: %s", query, exc)
            raise UpstreamUnavailableError(f"Open Library search failed: {exc}") from exc

        if not isinstance(data, dict):
            raise UpstreamUnavailableError("Open Library returned an unexpected payload")
        books: List[Book] = []
        for doc in data.get("docs") or []:
            if not isinstance(doc, dict):
                continue
            book = openlibrary_to_book(doc)
            if book is not None:
                books.append(book)
        return books

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
