from __future__ import annotations
import json
import logging
import re
import time
from typing import Any, Dict, List, Optional
import requests
from .config import LLM_GATEWAY_URL, LLM_GATEWAY_KEY, LLM_MODEL, LLM_TIMEOUT_SECONDS, LLM_MAX_ATTEMPTS

logger = logging.getLogger(__name__)

# Statuses that are the caller's problem, not the gateway's; never retried.
NO_RETRY = {400, 401, 402, 403, 429}

_FENCED = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_OBJECT = re.compile(r"\{[\s\S]*\}")


class GatewayError(Exception):
    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status
        self.message = message


def chat(
    messages: List[Dict[str, str]],
    model: Optional[str] = None,
    temperature: Optional[float] = None,
    max_attempts: Optional[int] = None,
    backoff_seconds: float = 2.0,
) -> str:
    """Send an OpenAI-style chat completion and return the first message content."""
    if not LLM_GATEWAY_KEY:
        raise GatewayError(500, "AI service is not configured")

    payload: Dict[str, Any] = {"model": model or LLM_MODEL, "messages": messages}
    if temperature is not None:
        payload["temperature"] = temperature
    headers = {"Authorization": f"Bearer {LLM_GATEWAY_KEY}", "Content-Type": "application/json"}

    attempts = max(1, max_attempts or LLM_MAX_ATTEMPTS)
    last: Optional[GatewayError] = None
    for attempt in range(1, attempts + 1):
        try:
            resp = requests.post(LLM_GATEWAY_URL, json=payload, headers=headers, timeout=LLM_TIMEOUT_SECONDS)
        except requests.RequestException as e:
            logger.warning("gateway attempt %d/%d failed: %s", attempt, attempts, e)
            last = GatewayError(503, "AI service unreachable")
        else:
            if resp.ok:
                try:
                    content = resp.json()["choices"][0]["message"]["content"]
                except (ValueError, KeyError, IndexError, TypeError):
                    raise GatewayError(502, "Malformed response from AI service")
                if not content:
                    raise GatewayError(502, "Empty response from AI service")
                return content
            logger.warning("gateway attempt %d/%d returned %s: %s", attempt, attempts, resp.status_code, resp.text[:200])
            if resp.status_code == 429:
                raise GatewayError(429, "Rate limit exceeded. Please try again in a moment.")
            if resp.status_code == 402:
                raise GatewayError(402, "Payment required. Please add credits to continue.")
            if resp.status_code in NO_RETRY:
                raise GatewayError(502, "AI service rejected the request")
            last = GatewayError(502, "AI service error. Please try again.")
        if attempt < attempts:
            time.sleep(backoff_seconds * attempt)

    logger.error("gateway gave up after %d attempts", attempts)
    raise last or GatewayError(502, "AI service error. Please try again.")


def extract_json(content: str) -> Any:
    """Pull a JSON object out of a model reply, fenced or bare."""
    m = _FENCED.search(content)
    text = m.group(1).strip() if m else content.strip()
    try:
        return json.loads(text)
    except ValueError:
        pass
    m = _OBJECT.search(text)
    if m is None:
        raise ValueError("No JSON object in response")
    return json.loads(m.group(0))
