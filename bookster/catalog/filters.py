"""
Filter and sort compilation for catalog searches.

A ``SearchBooksRequest`` is turned into a ``BookFilter`` value object
and a list of ``SortDirective``s. The search index receives them
rendered in its own expression language (``to_expression()``); the
database tier and the in-memory gateways evaluate the same objects
directly, so every tier applies identical constraints.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .schemas import SearchBooksRequest


@dataclass(frozen=True)
class SortDirective:
    field: str
    descending: bool = False

    def to_expression(self) -> str:
        return f"{self.field}:{'desc' if self.descending else 'asc'}"


# Closed set of accepted sort tokens. Anything else means relevance order.
SORT_DIRECTIVES: Dict[str, SortDirective] = {
    "published_year:asc": SortDirective("publishedYear"),
    "published_year:desc": SortDirective("publishedYear", descending=True),
    "like_count:desc": SortDirective("likeCount", descending=True),
    "reading_count:desc": SortDirective("readingCount", descending=True),
    "read_count:desc": SortDirective("readCount", descending=True),
    "created_at:desc": SortDirective("createdAt", descending=True),
}


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


@dataclass(frozen=True)
class BookFilter:
    """Structured constraints shared by every search tier.

    Field names in ``matches()`` follow the search document shape
    (``language``, ``publishedYear``, ``genreSlugs``).
    """

    language: Optional[str] = None
    published_year_min: Optional[int] = None
    published_year_max: Optional[int] = None
    genre_slugs: Tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return (
            not self.language
            and self.published_year_min is None
            and self.published_year_max is None
            and not self.genre_slugs
        )

    def clauses(self) -> List[str]:
        parts: List[str] = []
        if self.language:
            parts.append(f"language = {_quote(self.language)}")
        if self.published_year_min is not None:
            parts.append(f"publishedYear >= {self.published_year_min}")
        if self.published_year_max is not None:
            parts.append(f"publishedYear <= {self.published_year_max}")
        if self.genre_slugs:
            group = " OR ".join(f"genreSlugs = {_quote(s)}" for s in self.genre_slugs)
            parts.append(f"({group})")
        return parts

    def to_expression(self) -> Optional[str]:
        """Render as a search index filter, or ``None`` when unconstrained."""
        parts = self.clauses()
        return " AND ".join(parts) if parts else None

    def matches(self, document: Mapping[str, Any]) -> bool:
        if self.language and document.get("language") != self.language:
            return False
        year = document.get("publishedYear") or 0
        if self.published_year_min is not None and year < self.published_year_min:
            return False
        if self.published_year_max is not None and year > self.published_year_max:
            return False
        if self.genre_slugs:
            slugs = document.get("genreSlugs") or []
            if not any(s in slugs for s in self.genre_slugs):
                return False
        return True


def _year_bound(value: Optional[int]) -> Optional[int]:
    if isinstance(value, int) and not isinstance(value, bool) and value > 0:
        return value
    return None


def compile_filter(request: SearchBooksRequest) -> BookFilter:
    slugs = tuple(s.strip() for s in request.genre_slugs if s and s.strip())
    return BookFilter(
        language=(request.language or "").strip() or None,
        published_year_min=_year_bound(request.published_year_min),
        published_year_max=_year_bound(request.published_year_max),
        genre_slugs=slugs,
    )


def compile_sort(sort: Optional[str]) -> List[SortDirective]:
    """Map a sort token to index sort directives.

    ``relevance``, empty and unknown tokens all give ``[]``.
    """
    if not sort or not sort.strip():
        return []
    directive = SORT_DIRECTIVES.get(sort.strip().lower())
    return [directive] if directive else []


def compile_query(request: SearchBooksRequest) -> Tuple[BookFilter, List[SortDirective]]:
    return compile_filter(request), compile_sort(request.sort)
