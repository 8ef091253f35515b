"""
Catalog package: tiered book search and canonical book writes.

A search is answered from the search index when it can be, then from
the relational store, then from Open Library. Books discovered in Open
Library are written into the relational store and re-indexed so the
next identical search stays in the index. The modules are:

* ``filters``: request to index filter/sort compilation
* ``documents``: Book <-> search document codec and index settings
* ``openlibrary_service``: Open Library search adapter
* ``store`` / ``sql_store``: canonical store gateway
* ``search_index``: search index gateway
* ``upsert``: identity resolution and association sync
* ``service``: the orchestrating ``CatalogService``
* ``router``: FastAPI routes
"""

from .router import router as catalog_router  # noqa: F401
