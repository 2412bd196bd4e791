"""Rate limiting exceptions."""

from fastapi import HTTPException, status


class RateLimitExceededException(HTTPException):
    """Raised when a caller exceeds its request allowance."""

    def __init__(self, retry_after: int, headers: dict[str, str] | None = None):
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Too many requests, retry after {retry_after} seconds",
            headers={**(headers or {}), "Retry-After": str(retry_after)},
        )
        self.retry_after = retry_after
