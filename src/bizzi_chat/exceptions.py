"""Exceptions raised by the Bizzi chat client."""

from typing import Optional


class BizziError(Exception):
    """Raised when a Bizzi backend call or a client-side operation fails."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"{self.message} (HTTP {self.status_code})"
        return self.message
