from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from adaptive_tokens.core.llm.completion_client import CompletionError, ErrorKind, FinishReason
from adaptive_tokens.core.llm.json_output import MalformedOutputError, looks_cut_off


class Verdict(StrEnum):
    SUCCESS = "success"
    RETRYABLE_TRUNCATION = "retryable_truncation"
    NON_RETRYABLE_ERROR = "non_retryable_error"


@dataclass(frozen=True)
class Classification:
    verdict: Verdict
    # Human-readable truncation signal, used in baseline adjustment reasons.
    reason: str | None = None
    error_kind: ErrorKind | None = None
    # content_filter: generation was withheld, so the caller gets an empty result.
    empty_result: bool = False


LENGTH_REASON = "finish_reason: length"
PARSE_ERROR_REASON = "JSON parse error"


class FailureClassifier:
    """
    Decide whether an attempt succeeded, was truncated, or failed for good.

    A `length` finish reason is always truncation. A malformed structured output only
    counts as truncation when its raw content is long enough to be a cut fragment.
    With `require_cut_off` it must also end mid-structure, so well-closed garbage
    fails at once instead of being retried.
    """

    def __init__(self, *, min_fragment_chars: int = 20, require_cut_off: bool = False):
        if min_fragment_chars < 1:
            raise ValueError("min_fragment_chars must be >= 1")
        self._min_fragment_chars = min_fragment_chars
        self._require_cut_off = require_cut_off

    def classify_result(self, finish_reason: FinishReason | str | None) -> Classification:
        reason = (
            finish_reason
            if isinstance(finish_reason, FinishReason)
            else FinishReason.from_provider(finish_reason)
        )
        if reason is FinishReason.LENGTH:
            return Classification(verdict=Verdict.RETRYABLE_TRUNCATION, reason=LENGTH_REASON)
        if reason is FinishReason.CONTENT_FILTER:
            return Classification(verdict=Verdict.SUCCESS, empty_result=True)
        return Classification(verdict=Verdict.SUCCESS)

    def classify_error(self, exc: BaseException) -> Classification:
        if isinstance(exc, MalformedOutputError):
            if self._is_truncated_fragment(exc.raw_content):
                return Classification(
                    verdict=Verdict.RETRYABLE_TRUNCATION, reason=PARSE_ERROR_REASON
                )
            return Classification(verdict=Verdict.NON_RETRYABLE_ERROR, error_kind=ErrorKind.UNKNOWN)

        if isinstance(exc, CompletionError):
            return Classification(verdict=Verdict.NON_RETRYABLE_ERROR, error_kind=exc.kind)

        return Classification(verdict=Verdict.NON_RETRYABLE_ERROR, error_kind=ErrorKind.UNKNOWN)

    def _is_truncated_fragment(self, raw_content: str | None) -> bool:
        if not raw_content:
            return False
        fragment = raw_content.strip()
        if len(fragment) < self._min_fragment_chars:
            return False
        if self._require_cut_off:
            return looks_cut_off(fragment)
        return True
