"""LLM integration layer.

This package is intentionally small:
- One request per call; retry policy lives in `adaptive_tokens.escalation`.
- No prompt/output logging.
- Configurable via environment variables.
"""
