"""SqlCatalogStore against a file-backed SQLite database."""
from datetime import datetime

import pytest
import pytest_asyncio

from bookster.catalog.filters import BookFilter
from bookster.catalog.schemas import SearchBooksRequest, UpsertAuthor, UpsertBookRequest, UpsertGenre
from bookster.catalog.service import CatalogService
from bookster.catalog.sql_store import SqlCatalogStore
from bookster.errors import ConflictError, NotFoundError, UpstreamUnavailableError
from bookster.models import (
    Author,
    BookAuthorLink,
    BookGenreLink,
    BookRow,
    ExternalSource,
    Genre,
    ReactionType,
    ReadingStatus,
)


pytestmark = pytest.mark.asyncio


@pytest_asyncio.fixture
async def sql_store(tmp_path):
    # In-memory SQLite is per connection, so use a file.
    store = SqlCatalogStore.from_url(f"sqlite+aiosqlite:///{tmp_path}/catalog.db")
    await store.create_schema()
    yield store
    await store.close()


async def _book(store, book_id, title, **kwargs):
    return await store.create_book(BookRow(id=book_id, title=title, **kwargs))


async def test_create_and_get_book(sql_store):
    created = await _book(sql_store, "b1", "Dune", language="en", published_year=1965)

    fetched = await sql_store.get_book("b1")

    assert fetched.title == "Dune"
    assert fetched.published_year == 1965
    assert created.created_at is not None
    assert await sql_store.get_book("missing") is None


async def test_duplicate_primary_key_conflicts(sql_store):
    await _book(sql_store, "b1", "Dune")

    with pytest.raises(ConflictError):
        await _book(sql_store, "b1", "Dune again")


async def test_duplicate_external_identity_conflicts(sql_store):
    await _book(sql_store, "b1", "Dune", external_source=ExternalSource.OPEN_LIBRARY, external_id="/works/OL1W")

    with pytest.raises(ConflictError):
        await _book(sql_store, "b2", "Dune", external_source=ExternalSource.OPEN_LIBRARY, external_id="/works/OL1W")


async def test_find_by_external_id(sql_store):
    await _book(sql_store, "b1", "Dune", external_source=ExternalSource.OPEN_LIBRARY, external_id="/works/OL1W")

    found = await sql_store.find_book_by_external_id(ExternalSource.OPEN_LIBRARY, "/works/OL1W")
    missing = await sql_store.find_book_by_external_id(ExternalSource.GOOGLE_BOOKS, "/works/OL1W")

    assert found.id == "b1"
    assert found.external_source == ExternalSource.OPEN_LIBRARY
    assert missing is None


async def test_update_book(sql_store):
    await _book(sql_store, "b1", "Dune")

    updated = await sql_store.update_book("b1", {"title": "Dune (1965)", "subtitle": "Book one"})

    assert updated.title == "Dune (1965)"
    assert updated.subtitle == "Book one"
    with pytest.raises(NotFoundError):
        await sql_store.update_book("missing", {"title": "x"})


async def test_author_order_by_position_then_insertion(sql_store):
    await _book(sql_store, "b1", "Good Omens")
    for author_id, name in (("a1", "Terry Pratchett"), ("a2", "Neil Gaiman"), ("a3", "Editor")):
        await sql_store.upsert_author(Author(id=author_id, name=name))
    await sql_store.upsert_book_author(BookAuthorLink(book_id="b1", author_id="a3", position=1))
    await sql_store.upsert_book_author(BookAuthorLink(book_id="b1", author_id="a1", position=0))
    await sql_store.upsert_book_author(BookAuthorLink(book_id="b1", author_id="a2", position=0))

    authors = await sql_store.list_book_authors("b1")

    assert [a.id for a in authors] == ["a1", "a2", "a3"]


async def test_author_upsert_renames(sql_store):
    await sql_store.upsert_author(Author(id="a1", name="F. Herbert"))

    renamed = await sql_store.upsert_author(Author(id="a1", name="Frank Herbert", sort_name="Herbert, Frank"))

    assert renamed.name == "Frank Herbert"
    assert renamed.sort_name == "Herbert, Frank"


async def test_genre_upsert_by_slug_and_confidence(sql_store):
    await _book(sql_store, "b1", "Dune")
    first = await sql_store.upsert_genre(Genre(id="g1", name="SF", slug="scifi"))
    second = await sql_store.upsert_genre(Genre(id="g2", name="Science Fiction", slug="scifi"))
    await sql_store.upsert_book_genre(BookGenreLink(book_id="b1", genre_id=first.id, confidence=0.8))
    await sql_store.upsert_book_genre(BookGenreLink(book_id="b1", genre_id=first.id, confidence=None))

    genres = await sql_store.list_book_genres("b1")

    assert second.id == "g1"
    assert [g.name for g in genres] == ["Science Fiction"]


async def test_search_is_case_insensitive_substring(sql_store):
    await _book(sql_store, "b1", "Children of Dune")
    await _book(sql_store, "b2", "The Dune Encyclopedia")
    await _book(sql_store, "b3", "Hyperion")
    await _book(sql_store, "b4", "100% Dune")

    rows = await sql_store.search_books("DUNE", BookFilter(), limit=20, offset=0)
    percent = await sql_store.search_books("100%", BookFilter(), limit=20, offset=0)

    assert [r.id for r in rows] == ["b4", "b1", "b2"]
    assert [r.id for r in percent] == ["b4"]


async def test_search_pages(sql_store):
    for i in range(5):
        await _book(sql_store, f"b{i}", f"Dune {i}")

    rows = await sql_store.search_books("dune", BookFilter(), limit=2, offset=2)

    assert [r.id for r in rows] == ["b2", "b3"]


async def test_search_filters(sql_store):
    await _book(sql_store, "b1", "Dune", language="en", published_year=1965)
    await _book(sql_store, "b2", "Dune Messiah", language="en", published_year=1969)
    await _book(sql_store, "b3", "Dune (fr)", language="fr", published_year=1970)
    genre = await sql_store.upsert_genre(Genre(id="g1", name="SF", slug="scifi"))
    await sql_store.upsert_book_genre(BookGenreLink(book_id="b1", genre_id=genre.id))
    await sql_store.upsert_book_genre(BookGenreLink(book_id="b3", genre_id=genre.id))

    by_genre = await sql_store.search_books(
        "dune", BookFilter(genre_slugs=("scifi", "noir")), limit=20, offset=0
    )
    by_language = await sql_store.search_books(
        "dune", BookFilter(language="en", published_year_min=1966), limit=20, offset=0
    )

    assert [r.id for r in by_genre] == ["b1", "b3"]
    assert [r.id for r in by_language] == ["b2"]


async def test_activity_last_write_wins_and_counts(sql_store):
    await _book(sql_store, "b1", "Dune")
    await sql_store.upsert_reaction("u1", "b1", ReactionType.LIKE)
    await sql_store.upsert_reaction("u1", "b1", ReactionType.DISLIKE)
    await sql_store.upsert_reaction("u2", "b1", ReactionType.DISLIKE)
    await sql_store.upsert_status("u1", "b1", ReadingStatus.READING, started_at=datetime(2024, 1, 2))
    status = await sql_store.upsert_status("u1", "b1", ReadingStatus.READ)

    assert await sql_store.count_reactions("b1", ReactionType.LIKE) == 0
    assert await sql_store.count_reactions("b1", ReactionType.DISLIKE) == 2
    assert await sql_store.count_statuses("b1", ReadingStatus.READING) == 0
    assert await sql_store.count_statuses("b1", ReadingStatus.READ) == 1
    assert status.started_at.replace(tzinfo=None) == datetime(2024, 1, 2)


async def test_activity_on_unknown_book(sql_store):
    with pytest.raises(NotFoundError):
        await sql_store.upsert_reaction("u1", "missing", ReactionType.LIKE)
    with pytest.raises(NotFoundError):
        await sql_store.upsert_status("u1", "missing", ReadingStatus.READ)


async def test_service_over_sql_store(sql_store, index, external, make_ol_book):
    service = CatalogService(sql_store, index, external)
    await service.upsert_book(
        UpsertBookRequest(
            id="b1",
            title="Good Omens",
            authors=[
                UpsertAuthor(id="a2", name="Neil Gaiman", position=1),
                UpsertAuthor(id="a1", name="Terry Pratchett", position=0),
            ],
            genres=[UpsertGenre(name="Fantasy", slug="fantasy", confidence=0.9)],
        )
    )
    external.responses["dune"] = [make_ol_book()]

    from_db = await service.search_books(SearchBooksRequest(query="omens"))
    promoted = await service.search_books(SearchBooksRequest(query="dune"))
    again = await service.search_books(SearchBooksRequest(query="dune"))

    assert from_db.books[0].author_names == ["Terry Pratchett", "Neil Gaiman"]
    assert from_db.books[0].genre_slugs == ["fantasy"]
    assert promoted.books[0].id == "ol-OL893415W"
    assert [b.id for b in again.books] == ["ol-OL893415W"]
    assert external.calls == ["dune"]


@pytest_asyncio.fixture
async def schemaless_store(tmp_path):
    store = SqlCatalogStore.from_url(f"sqlite+aiosqlite:///{tmp_path}/empty.db")
    yield store
    await store.close()


async def test_read_failures_raise_upstream_unavailable(schemaless_store):
    with pytest.raises(UpstreamUnavailableError):
        await schemaless_store.get_book("b1")
    with pytest.raises(UpstreamUnavailableError):
        await schemaless_store.find_book_by_external_id(ExternalSource.OPEN_LIBRARY, "/works/OL1W")
    with pytest.raises(UpstreamUnavailableError):
        await schemaless_store.search_books("dune", BookFilter(), limit=20, offset=0)
    with pytest.raises(UpstreamUnavailableError):
        await schemaless_store.list_book_authors("b1")
    with pytest.raises(UpstreamUnavailableError):
        await schemaless_store.list_book_genres("b1")
    with pytest.raises(UpstreamUnavailableError):
        await schemaless_store.count_reactions("b1", ReactionType.LIKE)
    with pytest.raises(UpstreamUnavailableError):
        await schemaless_store.count_statuses("b1", ReadingStatus.READ)


async def test_write_failures_raise_upstream_unavailable(schemaless_store):
    with pytest.raises(UpstreamUnavailableError):
        await schemaless_store.create_book(BookRow(id="b1", title="Dune"))
    with pytest.raises(UpstreamUnavailableError):
        await schemaless_store.upsert_reaction("u1", "b1", ReactionType.LIKE)
