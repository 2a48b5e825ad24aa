"""Application exceptions mapped to HTTP error responses.

Services and auth dependencies raise these; `main.py` registers a single
handler that turns any `CatError` into an `InformativeResponse` body.
"""


class CatError(Exception):
    """Base error carrying the HTTP status code to respond with."""
    code = 500

    def __init__(self, message: str, code: int = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class BadRequestError(CatError):
    code = 400


class NotAuthenticatedError(CatError):
    code = 401

    def __init__(self, message: str = "User has not been authenticated."):
        super().__init__(message)


class ForbiddenError(CatError):
    code = 403

    def __init__(self, message: str = "You do not have permission to access this resource."):
        super().__init__(message)


class NotFoundError(CatError):
    code = 404

    @classmethod
    def for_entity(cls, entity: str, entity_id) -> "NotFoundError":
        return cls(f"There is no {entity} with the following id: {entity_id}")


class ConflictError(CatError):
    code = 409


class RegistryError(CatError):
    """An organisation registry could not be reached or answered badly."""
    code = 500
