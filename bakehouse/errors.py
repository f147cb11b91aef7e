class BakehouseError(Exception):
    """Base error; `status_code` is what the HTTP layer answers with."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInput(BakehouseError):
    status_code = 400


class UnitMismatch(InvalidInput):
    status_code = 422


class NotFound(BakehouseError):
    status_code = 404


class Conflict(BakehouseError):
    status_code = 409


class Unauthorized(BakehouseError):
    status_code = 401


class Forbidden(BakehouseError):
    status_code = 403


class PersistenceError(BakehouseError):
    status_code = 500
