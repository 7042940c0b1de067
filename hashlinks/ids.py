"""
HashLinks - Id Sources

Where an entry's id comes from is picked once, at registry construction:
  TransportAssignedIds  the log assigns sequence number and consensus time
  LocalMonotonicIds     detached mode, 1, 2, 3... with local timestamps
"""

from __future__ import annotations

import logging
from typing import Any

from hashlinks.errors import TransportError
from hashlinks.transport import AppendResult, Transport
from hashlinks.types import now_iso

logger = logging.getLogger(__name__)


class IdSource:
    """Assigns the id, timestamp and submitter of a newly registered entry."""

    async def assign(self, topic_id: str | None, payload: Any) -> AppendResult:
        raise NotImplementedError


class TransportAssignedIds(IdSource):
    def __init__(self, transport: Transport):
        self.transport = transport

    async def assign(self, topic_id: str | None, payload: Any) -> AppendResult:
        if topic_id is None:
            raise TransportError("Cannot append without a topic id")
        try:
            return await self.transport.append(topic_id, payload)
        except TransportError:
            raise
        except Exception as e:
            logger.error("Append to %s failed: %s", topic_id, e)
            raise TransportError(f"Append to {topic_id} failed: {e}") from e


class LocalMonotonicIds(IdSource):
    def __init__(self, submitter: str = "local", start: int = 1):
        self.submitter = submitter
        self._next = start

    async def assign(self, topic_id: str | None, payload: Any) -> AppendResult:
        seq = self._next
        self._next += 1
        return AppendResult(sequence_number=seq, timestamp=now_iso(), submitter=self.submitter)


def id_source_for(transport: Transport | None, topic_id: str | None) -> IdSource:
    if transport is not None and topic_id is not None:
        return TransportAssignedIds(transport)
    return LocalMonotonicIds()
