"""Read-only transport over the Hedera mirror node REST API."""

from __future__ import annotations

import base64
import binascii
import logging
from datetime import UTC, datetime
from typing import Any

import httpx

from hashlinks.config import settings
from hashlinks.errors import TransportError
from hashlinks.transport import AppendResult, Transport, TransportMessage
from hashlinks.types import parse_timestamp

logger = logging.getLogger(__name__)


def mirror_to_iso(consensus_timestamp: str) -> str:
    """'1700000000.123456789' -> '2023-11-14T22:13:20.123456Z' (nanos truncated)."""
    seconds, _, nanos = consensus_timestamp.partition(".")
    micros = int((nanos or "0").ljust(9, "0")[:6])
    dt = datetime.fromtimestamp(int(seconds), UTC).replace(microsecond=micros)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def iso_to_mirror(timestamp: str) -> str:
    dt = parse_timestamp(timestamp)
    return f"{int(dt.timestamp())}.{dt.microsecond:06d}000"


class MirrorNodeTransport(Transport):
    """
    Reads topic messages from a mirror node.
    Appending needs a signed consensus transaction, which lives outside this core.
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = (base_url or settings.MIRROR_NODE_URL).rstrip("/")
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout or settings.HTTP_TIMEOUT_SECONDS)

    async def append(self, topic_id: str, payload: Any) -> AppendResult:
        raise TransportError("Mirror node transport is read-only")

    async def create_topic(self, memo: str = "") -> str:
        raise TransportError("Mirror node transport cannot create topics")

    async def read_since(
        self,
        topic_id: str,
        cursor: str | None,
        *,
        limit: int = 100,
    ) -> list[TransportMessage]:
        params: dict[str, Any] = {"order": "asc", "limit": limit}
        if cursor is not None:
            params["timestamp"] = f"gte:{iso_to_mirror(cursor)}"
        return await self._get_messages(topic_id, params)

    async def read_latest(self, topic_id: str, *, limit: int = 1) -> list[TransportMessage]:
        return await self._get_messages(topic_id, {"order": "desc", "limit": limit})

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def _get_messages(self, topic_id: str, params: dict[str, Any]) -> list[TransportMessage]:
        url = f"{self.base_url}/api/v1/topics/{topic_id}/messages"
        try:
            res = await self.client.get(url, params=params)
            if res.status_code == 404:
                return []
            res.raise_for_status()
            payload = res.json()
        except httpx.HTTPError as e:
            logger.error("Mirror node read failed for %s: %s", topic_id, e)
            raise TransportError(f"Mirror node read failed for {topic_id}: {e}") from e
        except ValueError as e:
            raise TransportError(f"Mirror node returned invalid JSON for {topic_id}") from e

        try:
            return [self._to_message(raw) for raw in payload.get("messages", [])]
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.error("Mirror node returned a malformed message for %s: %r", topic_id, e)
            raise TransportError(f"Mirror node returned a malformed message for {topic_id}: {e!r}") from e

    @staticmethod
    def _to_message(raw: dict[str, Any]) -> TransportMessage:
        encoded = raw.get("message", "")
        try:
            body: bytes | str = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError):
            # Left as-is; the registry logs and skips it on decode
            body = encoded
        return TransportMessage(
            sequence_number=int(raw["sequence_number"]),
            consensus_timestamp=mirror_to_iso(raw["consensus_timestamp"]),
            payer=raw.get("payer_account_id") or "unknown",
            body=body,
        )
