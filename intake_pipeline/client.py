"""Extraction capability backed by the OpenAI chat completions API."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional, Protocol

from openai import OpenAI

from . import config, prompt
from .schema import ExtractionRequest

REASONING_MODEL_MARKERS = ("thinking", "reasoning", "gpt-5")


class Extractor(Protocol):
    def extract(self, request: ExtractionRequest) -> str: ...


def completion_kwargs(settings: config.Settings) -> Dict[str, Any]:
    """Model parameters shared by every extraction call."""
    kwargs: Dict[str, Any] = {
        "model": settings.model,
        "temperature": settings.temperature,
        "max_tokens": settings.max_output_tokens,
        "response_format": {"type": "json_object"},
    }
    model = settings.model.lower()
    if settings.reasoning_effort and any(marker in model for marker in REASONING_MODEL_MARKERS):
        kwargs["extra_body"] = {"reasoning": {"effort": settings.reasoning_effort}}
    return kwargs


def fetch_completion(
    client: OpenAI,
    messages: List[Dict[str, Any]],
    settings: config.Settings,
) -> str:
    """Call the model, retrying with a linear backoff; returns the message text."""

    kwargs = completion_kwargs(settings)
    attempts = max(1, settings.retry_attempts)
    for attempt in range(1, attempts + 1):
        try:
            response = client.chat.completions.create(messages=messages, **kwargs)
            content = (response.choices[0].message.content or "").strip()
            if not content:
                raise ValueError("Model returned an empty message")
            return content
        except Exception as exc:  # noqa: BLE001
            logging.warning("Extraction attempt %d/%d failed: %s", attempt, attempts, exc)
            if attempt == attempts:
                raise
            time.sleep(settings.retry_backoff_seconds * attempt)

    raise RuntimeError("unreachable")


class OpenAIExtractor:
    def __init__(self, settings: Optional[config.Settings] = None, client: Optional[OpenAI] = None):
        self.settings = settings or config.get_settings()
        self._client = client

    def _get_client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(timeout=self.settings.request_timeout)
        return self._client

    def extract(self, request: ExtractionRequest) -> str:
        messages = prompt.build_messages(request)
        logging.debug(
            "Sending %s extraction request for %s",
            "image" if request.is_image else "text",
            request.source_name,
        )
        return fetch_completion(self._get_client(), messages, self.settings)
