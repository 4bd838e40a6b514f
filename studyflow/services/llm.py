"""OpenAI chat wrapper shared by the content transformers."""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional, Tuple

import openai
from flask import current_app
from openai import OpenAI

logger = logging.getLogger(__name__)


class TransformError(Exception):
    """A transformation failed; ``status`` follows the HTTP meaning (400/402/429/500)."""

    def __init__(self, message: str, status: int = 500):
        super().__init__(message)
        self.message = message
        self.status = status


def translate_openai_error(e: Exception) -> TransformError:
    if isinstance(e, openai.RateLimitError):
        if getattr(e, "code", None) == "insufficient_quota":
            return TransformError("Payment required, please add credits to your AI account.", 402)
        return TransformError("Rate limits exceeded, please try again later.", 429)
    if isinstance(e, openai.APIStatusError):
        if e.status_code == 402:
            return TransformError("Payment required, please add credits to your AI account.", 402)
        if e.status_code == 400:
            return TransformError(f"AI provider rejected the request: {e.message}", 400)
        return TransformError(f"AI provider error: {e.message}", 500)
    if isinstance(e, openai.APIConnectionError):
        return TransformError("AI provider unreachable, please try again.", 500)
    return TransformError(f"LLM request failed: {type(e).__name__}: {e}", 500)


class ChatClient:
    def __init__(self, api_key: str, model: str = "gpt-4o-mini", timeout: int = 60):
        self.model = model
        self._client = OpenAI(api_key=api_key, timeout=timeout)

    def complete(self, system: str, user: str, temperature: float = 0.7, max_tokens: int = 2000) -> str:
        try:
            res = self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except openai.OpenAIError as e:
            logger.warning("OpenAI chat call failed: %s", e)
            raise translate_openai_error(e) from e
        return (res.choices[0].message.content or "").strip()


def client_ready(config=None) -> Tuple[bool, str]:
    cfg = config if config is not None else current_app.config
    if not (cfg.get("OPENAI_API_KEY") or "").strip():
        return False, "OPENAI_API_KEY is missing"
    return True, ""


def get_chat_client(config=None) -> Optional[ChatClient]:
    cfg = config if config is not None else current_app.config
    ok, _ = client_ready(cfg)
    if not ok:
        return None
    return ChatClient(cfg["OPENAI_API_KEY"].strip(), model=(cfg.get("OPENAI_MODEL") or "gpt-4o-mini"))


def strip_code_fences(s: str) -> str:
    text = (s or "").strip()
    if text.startswith("```"):
        lines = text.split("\n", 1)
        text = lines[1] if len(lines) > 1 else ""
        if "```" in text:
            text = text.rsplit("```", 1)[0]
    return text.strip()


def safe_json_loads(s: str, expect: type = dict) -> Tuple[Optional[Any], str]:
    """Parse model output as JSON of the expected type, tolerating fences and chatter."""
    if not s:
        return None, "Empty model output"

    text = strip_code_fences(s)
    try:
        obj = json.loads(text)
        if isinstance(obj, expect):
            return obj, ""
    except ValueError:
        pass

    # Fallback: pull the first object/array out of the surrounding text
    pattern = r"\[.*\]" if expect is list else r"\{.*\}"
    m = re.search(pattern, text, flags=re.DOTALL)
    if m:
        try:
            obj = json.loads(m.group(0))
            if isinstance(obj, expect):
                return obj, ""
        except ValueError:
            pass
    return None, "Model did not return valid json"
