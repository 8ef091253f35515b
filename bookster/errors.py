# bookster/errors.py
"""Error kinds raised by the catalog core.

Gateways translate library failures into these, the router turns them
into HTTP responses. Nothing here retries.
"""


class CatalogError(Exception):
    status_code = 500


class NotFoundError(CatalogError):
    status_code = 404


class InvalidArgumentError(CatalogError):
    status_code = 400


class ConflictError(CatalogError):
    status_code = 409


class UpstreamUnavailableError(CatalogError):
    status_code = 503


# Raised by the identity provider in front of this service, never by the core.
class UnauthenticatedError(CatalogError):
    status_code = 401


class ForbiddenError(CatalogError):
    status_code = 403
