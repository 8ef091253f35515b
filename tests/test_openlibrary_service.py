"""Tests for the Open Library adapter."""
import httpx
import pytest

from bookster.catalog.openlibrary_service import (
    OpenLibraryService,
    canonical_id,
    openlibrary_to_book,
)
from bookster.errors import UpstreamUnavailableError
from bookster.models import ExternalSource


DUNE_DOC = {
    "key": "/works/OL893415W",
    "title": "Dune",
    "author_name": ["Frank Herbert"],
    "author_key": ["OL79034A"],
    "first_publish_year": 1965,
    "cover_i": 11481354,
    "language": ["eng", "fre"],
}


def _service(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OpenLibraryService(client, user_agent="test-agent")


def test_openlibrary_to_book_maps_fields():
    book = openlibrary_to_book(DUNE_DOC)

    assert book.id == "ol-OL893415W"
    assert book.title == "Dune"
    assert book.external_source == ExternalSource.OPEN_LIBRARY
    assert book.external_id == "/works/OL893415W"
    assert book.published_year == 1965
    assert book.cover_image_url == "https://covers.openlibrary.org/b/id/11481354-M.jpg"
    assert book.language == "en"
    assert book.primary_author == "Frank Herbert"
    assert book.author_names == ["Frank Herbert"]
    assert book.authors[0].id == "OL79034A"
    assert book.authors[0].sort_name == "Frank Herbert"
    assert book.genres == []


def test_openlibrary_to_book_without_author_keys():
    book = openlibrary_to_book({"key": "/works/OL1W", "title": "X", "author_name": ["A", "B"]})

    assert [a.id for a in book.authors] == ["ol-author-0", "ol-author-1"]
    assert book.cover_image_url is None
    assert book.published_year is None
    assert book.language is None


def test_openlibrary_to_book_requires_key():
    assert openlibrary_to_book({"title": "No key"}) is None


def test_canonical_id_is_index_safe():
    assert canonical_id("/works/OL893415W") == "ol-OL893415W"
    assert canonical_id("/books/OL1M.x") == "ol-OL1M-x"


@pytest.mark.asyncio
async def test_search_books_sends_query_and_headers():
    seen = {}

    def handler(request):
        seen["q"] = request.url.params.get("q")
        seen["agent"] = request.headers.get("user-agent")
        return httpx.Response(200, json={"numFound": 1, "docs": [DUNE_DOC, {"title": "keyless"}]})

    books = await _service(handler).search_books("dune")

    assert seen == {"q": "dune", "agent": "test-agent"}
    assert [b.title for b in books] == ["Dune"]


@pytest.mark.asyncio
async def test_empty_docs_is_an_empty_result():
    books = await _service(lambda request: httpx.Response(200, json={"docs": []})).search_books("zzz")

    assert books == []


@pytest.mark.asyncio
async def test_error_status_raises_upstream_unavailable():
    service = _service(lambda request: httpx.Response(503, text="busy"))

    with pytest.raises(UpstreamUnavailableError):
        await service.search_books("dune")


@pytest.mark.asyncio
async def test_rate_limit_raises_upstream_unavailable():
    service = _service(lambda request: httpx.Response(429))

    with pytest.raises(UpstreamUnavailableError):
        await service.search_books("dune")


@pytest.mark.asyncio
async def test_transport_error_raises_upstream_unavailable():
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(UpstreamUnavailableError):
        await _service(handler).search_books("dune")


@pytest.mark.asyncio
async def test_malformed_json_raises_upstream_unavailable():
    service = _service(lambda request: httpx.Response(200, content=b"<html>"))

    with pytest.raises(UpstreamUnavailableError):
        await service.search_books("dune")
