from __future__ import annotations


class RegistryError(Exception):
    """Base class for failures reported to API callers as a typed outcome."""

    status_code = 500
    detail = "Internal server error"

    def __init__(self, detail: str | None = None) -> None:
        if detail is not None:
            self.detail = detail
        super().__init__(self.detail)


class Unauthenticated(RegistryError):
    status_code = 401
    detail = "Unauthorized"


class Forbidden(RegistryError):
    status_code = 403
    detail = "Admin access required"


class NotFound(RegistryError):
    status_code = 404
    detail = "Not found"


class DuplicateUser(RegistryError):
    status_code = 400
    detail = "A profile already exists for this account"


class SignupRejected(RegistryError):
    status_code = 400
    detail = "Signup failed"


class UnknownOwner(RegistryError):
    status_code = 400
    detail = "No user profile exists for this account"


class StoreUnavailable(RegistryError):
    status_code = 503
    detail = "Storage is temporarily unavailable. Please try again."


class RateLimited(RegistryError):
    status_code = 429

    def __init__(self, retry_after: int) -> None:
        self.retry_after = retry_after
        super().__init__(f"Rate limit exceeded. Try again in {retry_after} seconds.")
