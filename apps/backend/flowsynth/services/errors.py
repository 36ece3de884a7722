from __future__ import annotations


class ServiceError(RuntimeError):
    """Base error for service-layer failures that map to HTTP responses."""

    status_code: int = 400
    kind: str = "service"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.__class__.__name__
        super().__init__(self.message)


class InputError(ServiceError):
    """A required field is missing. Never sent downstream."""

    status_code = 400
    kind = "input"


class NotFoundError(ServiceError):
    status_code = 404
    kind = "not_found"


class ShapeError(ServiceError):
    """The generation service answered, but its output failed structural validation."""

    status_code = 422
    kind = "shape"


class UpstreamError(ServiceError):
    """The generation service was unreachable or returned an error."""

    status_code = 502
    kind = "upstream"


class PersistenceError(ServiceError):
    status_code = 503
    kind = "persistence"
