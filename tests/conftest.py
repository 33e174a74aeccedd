# =============================================================================
# Shared pytest fixtures
# =============================================================================

import pytest

import app.services.tokens as tokens


@pytest.fixture(autouse=True)
def _offline_token_count(monkeypatch):
    """tiktoken fetches its BPE files on first use; tests stay offline."""
    monkeypatch.setattr(tokens, "count_tokens", lambda text: len(text) // 4)
