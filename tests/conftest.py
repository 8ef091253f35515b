"""Shared fixtures: in-memory gateways with call counters."""
from typing import Dict, List, Union

import pytest

from bookster.catalog.openlibrary_service import openlibrary_to_book
from bookster.catalog.search_index import InMemorySearchIndex
from bookster.catalog.service import CatalogService
from bookster.catalog.store import InMemoryCatalogStore
from bookster.models import Book


class SpyIndex(InMemorySearchIndex):
    def __init__(self):
        super().__init__()
        self.search_calls = []
        self.update_calls = 0

    async def search(self, query, *, limit, offset, book_filter=None, sort=()):
        self.search_calls.append(
            {"query": query, "limit": limit, "offset": offset, "filter": book_filter, "sort": list(sort)}
        )
        return await super().search(
            query, limit=limit, offset=offset, book_filter=book_filter, sort=sort
        )

    async def update_documents(self, documents):
        self.update_calls += 1
        await super().update_documents(documents)


class SpyStore(InMemoryCatalogStore):
    def __init__(self):
        super().__init__()
        self.search_calls = 0

    async def search_books(self, title_query, book_filter, *, limit, offset):
        self.search_calls += 1
        return await super().search_books(title_query, book_filter, limit=limit, offset=offset)


class FakeOpenLibrary:
    """Scripted stand-in for OpenLibraryService, keyed by query word."""

    def __init__(self, responses: Dict[str, Union[List[Book], Exception]] = None):
        self.responses = responses or {}
        self.calls: List[str] = []

    async def search_books(self, query):
        self.calls.append(query)
        result = self.responses.get(query, [])
        if isinstance(result, Exception):
            raise result
        return [b.model_copy(deep=True) for b in result]

    async def close(self):
        pass


def ol_book(key="/works/OL893415W", title="Dune", authors=("Frank Herbert",), year=1965):
    return openlibrary_to_book(
        {
            "key": key,
            "title": title,
            "author_name": list(authors),
            "author_key": [f"OL{i}A" for i, _ in enumerate(authors)],
            "first_publish_year": year,
            "cover_i": 12345,
            "language": ["eng"],
        }
    )


@pytest.fixture
def store():
    return SpyStore()


@pytest.fixture
def index():
    return SpyIndex()


@pytest.fixture
def external():
    return FakeOpenLibrary()


@pytest.fixture
def service(store, index, external):
    return CatalogService(store, index, external)


@pytest.fixture
def make_ol_book():
    return ol_book
