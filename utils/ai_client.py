"""Gemini text-generation client and the JSON extraction boundary for its replies."""
import json
import os
import re
from typing import Any, Dict, Protocol

from flask import current_app
from google import genai
from google.genai import types


class LanguageModelError(Exception):
    """Raised when the language model cannot be reached or returns nothing."""


class ModelResponseError(Exception):
    """Raised when a model reply does not contain the expected JSON object."""


class LanguageModel(Protocol):
    def prompt(self, text: str) -> str:
        ...


class GeminiLanguageModel:
    """Single-turn text generation against the Gemini API."""

    def __init__(self, api_key: str, model_name: str, temperature: float = 0.3, max_output_tokens: int = 4096) -> None:
        if not api_key:
            raise LanguageModelError("GEMINI_API_KEY is not configured")
        self._client = genai.Client(api_key=api_key)
        self.model_name = model_name
        self.temperature = temperature
        self.max_output_tokens = max_output_tokens

    def prompt(self, text: str) -> str:
        current_app.logger.info("Dispatching Gemini request", extra={"model": self.model_name, "prompt_chars": len(text)})
        try:
            response = self._client.models.generate_content(
                model=self.model_name,
                contents=text,
                config=types.GenerateContentConfig(
                    temperature=self.temperature,
                    max_output_tokens=self.max_output_tokens,
                ),
            )
        except Exception as exc:  # pragma: no cover - relies on remote service
            current_app.logger.exception("Gemini request failed")
            raise LanguageModelError("Gemini request failed") from exc

        raw_text = (response.text or "").strip()
        if not raw_text:
            raise LanguageModelError("Gemini returned an empty response")
        return raw_text


def get_language_model() -> LanguageModel:
    """Return the installed model delegate, building a Gemini client when none is set."""
    installed = current_app.extensions.get("language_model")
    if installed is not None:
        return installed
    cfg = current_app.config
    return GeminiLanguageModel(
        api_key=cfg.get("GEMINI_API_KEY") or os.getenv("GEMINI_API_KEY", ""),
        model_name=cfg.get("GEMINI_TEXT_MODEL", "gemini-2.0-flash"),
        temperature=cfg.get("GEMINI_TEMPERATURE", 0.3),
        max_output_tokens=cfg.get("GEMINI_MAX_OUTPUT_TOKENS", 4096),
    )


def _first_json_block(text: str) -> str | None:
    """Return the span from the first ``{`` to the last ``}``, if any."""
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end != -1 and end > start:
        return text[start : end + 1]
    return None


def extract_json_object(raw_text: str | None) -> Dict[str, Any]:
    """Parse the JSON object embedded in a free-form model reply.

    Tolerates code fences and surrounding prose. Raises ``ModelResponseError``
    when no object can be decoded.
    """
    if not raw_text or not raw_text.strip():
        raise ModelResponseError("Model returned an empty reply")
    cleaned = raw_text.strip()
    cleaned = re.sub(r"^```[a-zA-Z0-9_-]*", "", cleaned).strip()
    cleaned = re.sub(r"```$", "", cleaned).strip()
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError:
        block = _first_json_block(cleaned)
        if block is None:
            raise ModelResponseError("Model reply did not contain a JSON object")
        try:
            payload = json.loads(block)
        except json.JSONDecodeError as exc:
            raise ModelResponseError("Model reply contained malformed JSON") from exc
    if not isinstance(payload, dict):
        raise ModelResponseError("Model reply JSON is not an object")
    return payload


def coerce_str(value: Any, default: str = "") -> str:
    if value is None:
        return default
    text = str(value).strip()
    return text or default


def coerce_int(value: Any) -> int | None:
    """Round numeric input half-up to an int; ``None`` for anything non-numeric."""
    if isinstance(value, bool) or value is None or value == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return int(number + 0.5) if number >= 0 else -int(-number + 0.5)


def coerce_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if value in {"true", "True", "1", 1}:
        return True
    if value in {"false", "False", "0", 0}:
        return False
    return None


def coerce_str_list(value: Any) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        return [str(value).strip()] if str(value).strip() else []
    return [str(item).strip() for item in value if str(item).strip()]
