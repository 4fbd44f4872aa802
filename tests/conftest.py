"""
Shared fixtures: note factories, scripted inference clients and state resets.
"""
import pytest
from datetime import datetime, timedelta, timezone

from notechart.core.cache import get_analysis_cache, get_debug_cache
from notechart.core.errors import InferenceUnavailable
from notechart.core.policy import reset_policy_store
from notechart.core.schemas import Note

NOW = datetime(2024, 6, 30, 12, 0, tzinfo=timezone.utc)


class ScriptedCompleter:
    """Returns queued responses in order; raises once the queue is empty."""

    def __init__(self, responses=None, error=None):
        self.responses = list(responses or [])
        self.error = error
        self.prompts = []

    def complete(self, system_prompt, prompt, max_tokens=500, timeout=None):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        if not self.responses:
            raise InferenceUnavailable(InferenceUnavailable.UPSTREAM_ERROR, "no scripted response left")
        return self.responses.pop(0)


@pytest.fixture(autouse=True)
def clean_state():
    """Each test starts with empty caches and the built-in policy."""
    get_analysis_cache().clear()
    get_debug_cache().clear()
    reset_policy_store()
    yield
    reset_policy_store()


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_note():
    """Factory: make_note('n1', days_ago=2, fields={...}, content_text=...)."""
    def _make(note_id, days_ago=0, **kwargs):
        kwargs.setdefault("title", f"Note {note_id}")
        kwargs.setdefault("content_text", "A short entry about the day.")
        if "created_at" not in kwargs:
            kwargs["created_at"] = NOW - timedelta(days=days_ago)
        return Note(note_id=note_id, **kwargs)
    return _make


@pytest.fixture
def unavailable_client():
    """Inference client with no credentials configured."""
    return ScriptedCompleter(
        error=InferenceUnavailable(InferenceUnavailable.MISSING_CREDENTIALS, "no keys")
    )


@pytest.fixture
def scripted_client():
    """Factory: scripted_client(response_1, response_2, ...)."""
    def _make(*responses):
        return ScriptedCompleter(responses=responses)
    return _make
