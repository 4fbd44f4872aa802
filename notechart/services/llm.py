"""
Inference transport using Groq (primary) and Gemini (fallback).

Provider failures never escape as provider exceptions: when no provider
returns text the client raises InferenceUnavailable with a reason.
"""
import os
import logging
from typing import Optional

import groq
from groq import Groq

from notechart.core.config import Settings, get_settings
from notechart.core.errors import InferenceUnavailable

logger = logging.getLogger(__name__)

_TIMEOUT_ERROR_NAMES = ("DeadlineExceeded", "TimeoutError", "ReadTimeout")


class InferenceClient:
    """Chat completion with automatic provider failover: Groq -> Gemini."""

    def __init__(self, settings: Optional[Settings] = None, groq_client: Optional[Groq] = None, gemini_model=None):
        self.settings = settings or get_settings()
        self._groq_client = groq_client
        self._gemini_model = gemini_model  # Lazy loaded to avoid import if not needed

    def _get_groq_client(self) -> Optional[Groq]:
        if self._groq_client is None:
            api_key = os.getenv("GROQ_API_KEY")
            if api_key:
                self._groq_client = Groq(api_key=api_key)
                logger.info("Groq AI client initialized")
        return self._groq_client

    def _get_gemini_model(self):
        if self._gemini_model is None:
            api_key = os.getenv("GEMINI_API_KEY")
            if api_key:
                try:
                    import google.generativeai as genai
                    genai.configure(api_key=api_key)
                    self._gemini_model = genai.GenerativeModel(self.settings.gemini_model)
                    logger.info(f"Gemini AI fallback initialized with model: {self.settings.gemini_model}")
                except Exception as e:
                    logger.warning(f"Gemini initialization failed: {e}")
        return self._gemini_model

    @property
    def available(self) -> bool:
        return self._get_groq_client() is not None or self._get_gemini_model() is not None

    def _call_groq(self, client: Groq, system_prompt: str, prompt: str, max_tokens: int, timeout: float) -> str:
        response = client.chat.completions.create(
            model=self.settings.groq_model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt}
            ],
            max_tokens=max_tokens,
            temperature=0.2,
            timeout=timeout,
        )
        return response.choices[0].message.content or ""

    def _call_gemini(self, model, system_prompt: str, prompt: str, timeout: float) -> str:
        full_prompt = f"{system_prompt}\n\n{prompt}"
        response = model.generate_content(full_prompt, request_options={"timeout": timeout})
        return response.text or ""

    def complete(self, system_prompt: str, prompt: str, max_tokens: int = 500, timeout: Optional[float] = None) -> str:
        """
        Get one completion, trying each configured provider in order.

        Raises:
            InferenceUnavailable: no credentials, every provider timed out, or
                every provider failed
        """
        timeout = timeout or self.settings.inference_timeout_seconds
        client = self._get_groq_client()
        model = self._get_gemini_model()
        if client is None and model is None:
            raise InferenceUnavailable(
                InferenceUnavailable.MISSING_CREDENTIALS,
                "set GROQ_API_KEY or GEMINI_API_KEY",
            )

        reasons = []

        # 1. Groq
        if client is not None:
            try:
                text = self._call_groq(client, system_prompt, prompt, max_tokens, timeout)
                if text.strip():
                    logger.debug("AI response from Groq")
                    return text
                reasons.append(InferenceUnavailable.UPSTREAM_ERROR)
                logger.warning("Groq returned an empty response, trying fallback")
            except groq.APITimeoutError as e:
                reasons.append(InferenceUnavailable.TIMEOUT)
                logger.warning(f"Groq timed out after {timeout}s, trying fallback: {e}")
            except groq.APIError as e:
                reasons.append(InferenceUnavailable.UPSTREAM_ERROR)
                error_str = str(e).lower()
                if "rate" in error_str or "limit" in error_str or "429" in error_str:
                    logger.warning(f"Groq rate limited, trying Gemini fallback: {e}")
                else:
                    logger.warning(f"Groq error, trying fallback: {e}")

        # 2. Gemini
        if model is not None:
            try:
                text = self._call_gemini(model, system_prompt, prompt, timeout)
                if text.strip():
                    logger.info("AI response from Gemini (fallback)")
                    return text
                reasons.append(InferenceUnavailable.UPSTREAM_ERROR)
            except Exception as e:
                if type(e).__name__ in _TIMEOUT_ERROR_NAMES:
                    reasons.append(InferenceUnavailable.TIMEOUT)
                else:
                    reasons.append(InferenceUnavailable.UPSTREAM_ERROR)
                logger.error(f"Gemini fallback also failed: {e}")

        if reasons and all(reason == InferenceUnavailable.TIMEOUT for reason in reasons):
            raise InferenceUnavailable(InferenceUnavailable.TIMEOUT, f"no response within {timeout}s")
        raise InferenceUnavailable(InferenceUnavailable.UPSTREAM_ERROR, "all providers failed")


_inference_client: Optional[InferenceClient] = None


def get_inference_client() -> InferenceClient:
    """Get or create the inference client singleton."""
    global _inference_client
    if _inference_client is None:
        _inference_client = InferenceClient()
    return _inference_client
