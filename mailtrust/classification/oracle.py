"""Client for the external classification oracle."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import httpx

from ..constants import Category
from ..errors import OracleError
from ..models import Message

logger = logging.getLogger(__name__)

MAX_BODY_CHARS = 5000

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")
_STYLE_BLOCK = re.compile(r"<style[^>]*>[\s\S]*?</style>", re.IGNORECASE)
_SCRIPT_BLOCK = re.compile(r"<script[^>]*>[\s\S]*?</script>", re.IGNORECASE)
_TAG = re.compile(r"<[^>]+>")
_WHITESPACE = re.compile(r"\s+")


def strip_html(html: Optional[str]) -> str:
    text = _STYLE_BLOCK.sub("", html or "")
    text = _SCRIPT_BLOCK.sub("", text)
    text = _TAG.sub(" ", text)
    return _WHITESPACE.sub(" ", text).strip()[:MAX_BODY_CHARS]


def message_body(message: Message) -> str:
    """Plain text body for the oracle, falling back to stripped HTML."""
    if message.body_text:
        return message.body_text[:MAX_BODY_CHARS]
    return strip_html(message.body_html)


@dataclass
class OracleClassification:
    category: str
    confidence: float = 0.5
    priority: int = 3
    summary: str = ""
    deadline: Optional[str] = None
    needs_reply: bool = False
    suggested_labels: list[str] = field(default_factory=list)
    suggested_action: str = "none"
    key_entities: dict[str, list[str]] = field(default_factory=dict)


def _clamp_number(value: Any, low: float, high: float, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number:
        return default
    return max(low, min(high, number))


def parse_oracle_reply(text: str) -> OracleClassification:
    """Pull the first JSON object out of a reply and normalize it."""
    match = _JSON_OBJECT.search(text or "")
    if not match:
        raise OracleError("No JSON object in oracle reply")
    try:
        data = json.loads(match.group(0))
    except ValueError as exc:
        raise OracleError(f"Malformed JSON in oracle reply: {exc}") from exc
    if not isinstance(data, dict):
        raise OracleError("Oracle reply is not a JSON object")

    entities = data.get("key_entities") if isinstance(data.get("key_entities"), dict) else {}
    labels = data.get("suggested_labels") if isinstance(data.get("suggested_labels"), list) else []
    # A zero or missing confidence falls back to 0.5.
    confidence = _clamp_number(data.get("confidence") or 0.5, 0.0, 1.0, 0.5)
    return OracleClassification(
        category=Category.from_string(data.get("category")).value,
        confidence=confidence,
        priority=int(_clamp_number(data.get("priority"), 1, 5, 3)),
        summary=str(data.get("summary") or ""),
        deadline=data.get("deadline") or None,
        needs_reply=bool(data.get("needs_reply")),
        suggested_labels=[str(label) for label in labels],
        suggested_action=str(data.get("suggested_action") or "none"),
        key_entities={
            key: [str(v) for v in entities.get(key) or []]
            for key in ("people", "dates", "amounts", "tasks")
        },
    )


class ClassificationOracle(Protocol):
    async def classify(self, message: Message) -> OracleClassification:  # pragma: no cover - interface
        ...


class HTTPClassificationOracle:
    """
    Posts one message to a classification endpoint.

    Any transport error, non-2xx status or malformed reply raises OracleError;
    the caller decides how to degrade.
    """

    user_agent: str = "MailTrust/0.1"

    def __init__(
        self,
        url: str,
        api_key: str = "",
        model: str = "",
        timeout_seconds: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.api_key = api_key
        self.model = model
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"User-Agent": self.user_agent}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_seconds),
                headers=headers,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def build_payload(self, message: Message) -> dict:
        payload = {
            "from_address": message.from_address,
            "from_name": message.from_name or "",
            "subject": message.subject or "",
            "body": message_body(message),
        }
        if self.model:
            payload["model"] = self.model
        return payload

    async def classify(self, message: Message) -> OracleClassification:
        client = await self._get_client()
        try:
            response = await client.post(self.url, json=self.build_payload(message))
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise OracleError("Oracle request timed out") from exc
        except httpx.HTTPStatusError as exc:
            raise OracleError(f"Oracle returned HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise OracleError(f"Oracle request failed: {exc}") from exc
        return parse_oracle_reply(response.text)
