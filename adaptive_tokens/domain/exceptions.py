from __future__ import annotations


class BusinessValidationError(Exception):
    """Raised when a domain rule is violated (e.g. a manual baseline above the cap)."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
