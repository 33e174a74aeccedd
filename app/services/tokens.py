# =============================================================================
# Token Estimation: tiktoken
# =============================================================================
#
# The rate limiter tracks a tokens-per-minute budget, so every LLM call is
# submitted with an estimated token cost: prompt tokens plus the completion
# allowance. cl100k_base is not the tokenizer of every provider's model, but
# it is close enough for budgeting.
# =============================================================================

from __future__ import annotations

import tiktoken

_encoder: tiktoken.Encoding | None = None


def _get_encoder() -> tiktoken.Encoding:
    """Lazily initialize and cache the tiktoken encoder."""
    global _encoder
    if _encoder is None:
        _encoder = tiktoken.get_encoding("cl100k_base")
    return _encoder


def count_tokens(text: str) -> int:
    """Exact cl100k_base token count of `text`."""
    if not text:
        return 0
    return len(_get_encoder().encode(text, disallowed_special=()))


def estimate_request_tokens(*texts: str, completion_tokens: int = 0) -> int:
    """Prompt tokens across all message texts plus the completion allowance."""
    return sum(count_tokens(t) for t in texts) + completion_tokens
