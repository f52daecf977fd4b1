from __future__ import annotations

from typing import Optional


class StetError(Exception):
    """Base class for every error raised by stet."""


class StoreError(StetError):
    """The local database could not be opened or migrated."""


class AuthRequired(StetError):
    """No usable token; the user has to (re)authenticate."""


class Forbidden(StetError):
    def __init__(self, message: str = "subscription expired or access denied"):
        super().__init__(message)


class RateLimited(StetError):
    def __init__(self, retry_after: Optional[int] = None):
        self.retry_after = retry_after
        msg = "rate limited"
        if retry_after:
            msg += f"; retry in {retry_after}s"
        super().__init__(msg)


class ApiError(StetError):
    def __init__(self, status_code: int, body: str = ""):
        self.status_code = status_code
        self.body = body
        text = f"API error ({status_code})"
        if body:
            text += f": {body[:200]}"
        super().__init__(text)


class AuthorizationError(StetError):
    """The interactive authorization flow ended without a code."""


class AuthFlowPending(StetError):
    def __init__(self, service: str):
        super().__init__(f"{service} authorization already in progress")
