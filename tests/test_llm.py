"""
Unit tests for the inference transport.
"""
import pytest
from types import SimpleNamespace

import groq
import httpx

from notechart.core.config import Settings
from notechart.core.errors import InferenceUnavailable
from notechart.services.llm import InferenceClient

REQUEST = httpx.Request("POST", "https://api.groq.com/openai/v1/chat/completions")


@pytest.fixture(autouse=True)
def no_credentials(monkeypatch):
    monkeypatch.delenv("GROQ_API_KEY", raising=False)
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)


def _groq_client(create):
    return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))


def _reply(text):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=text))])


class FakeGeminiModel:
    def __init__(self, text=None, error=None):
        self.text = text
        self.error = error
        self.calls = []

    def generate_content(self, prompt, request_options=None):
        self.calls.append(request_options)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(text=self.text)


@pytest.mark.unit
def test_missing_credentials():
    client = InferenceClient(settings=Settings())

    assert client.available is False
    with pytest.raises(InferenceUnavailable) as excinfo:
        client.complete("system", "prompt")
    assert excinfo.value.reason == InferenceUnavailable.MISSING_CREDENTIALS


@pytest.mark.unit
def test_groq_response_is_returned():
    seen = {}

    def create(**kwargs):
        seen.update(kwargs)
        return _reply('{"ok": true}')

    client = InferenceClient(settings=Settings(groq_model="test-model"), groq_client=_groq_client(create))

    assert client.complete("system", "prompt", max_tokens=50, timeout=3) == '{"ok": true}'
    assert seen["model"] == "test-model"
    assert seen["max_tokens"] == 50
    assert seen["timeout"] == 3


@pytest.mark.unit
def test_groq_timeout_without_fallback():
    def create(**kwargs):
        raise groq.APITimeoutError(request=REQUEST)

    client = InferenceClient(settings=Settings(), groq_client=_groq_client(create))

    with pytest.raises(InferenceUnavailable) as excinfo:
        client.complete("system", "prompt")
    assert excinfo.value.reason == InferenceUnavailable.TIMEOUT


@pytest.mark.unit
def test_groq_error_falls_back_to_gemini():
    def create(**kwargs):
        raise groq.APIConnectionError(request=REQUEST)

    gemini = FakeGeminiModel(text='{"from": "gemini"}')
    client = InferenceClient(settings=Settings(), groq_client=_groq_client(create), gemini_model=gemini)

    assert client.complete("system", "prompt", timeout=7) == '{"from": "gemini"}'
    assert gemini.calls == [{"timeout": 7}]


@pytest.mark.unit
def test_all_providers_failing_is_upstream_error():
    gemini = FakeGeminiModel(error=RuntimeError("500 from upstream"))
    client = InferenceClient(settings=Settings(), gemini_model=gemini)

    with pytest.raises(InferenceUnavailable) as excinfo:
        client.complete("system", "prompt")
    assert excinfo.value.reason == InferenceUnavailable.UPSTREAM_ERROR


@pytest.mark.unit
def test_empty_groq_reply_is_not_accepted():
    client = InferenceClient(settings=Settings(), groq_client=_groq_client(lambda **kwargs: _reply("   ")))

    with pytest.raises(InferenceUnavailable):
        client.complete("system", "prompt")
