from __future__ import annotations


class EscalationError(Exception):
    """Base error for escalation runs that end without a usable completion."""

    def __init__(
        self,
        message: str,
        *,
        correlation_id: str,
        prompt_name: str,
        attempts: int,
        last_max_tokens: int | None,
    ):
        super().__init__(message)
        self.message = message
        self.correlation_id = correlation_id
        self.prompt_name = prompt_name
        self.attempts = attempts
        self.last_max_tokens = last_max_tokens


class TruncationExhaustedError(EscalationError):
    """Every allowed attempt was truncated; the request is too large for the current policy."""


class TokenCapExceededError(EscalationError):
    """The next budget on the ladder would exceed the configured token cap."""

    def __init__(
        self,
        message: str,
        *,
        correlation_id: str,
        prompt_name: str,
        attempts: int,
        last_max_tokens: int | None,
        token_cap: int,
    ):
        super().__init__(
            message,
            correlation_id=correlation_id,
            prompt_name=prompt_name,
            attempts=attempts,
            last_max_tokens=last_max_tokens,
        )
        self.token_cap = token_cap
