"""
PostgresTransport for the HashLinks registries.

Implements the Transport protocol using Postgres as the log.
Every topic is a run of rows in topic_messages ordered by sequence_number.
"""

from __future__ import annotations

from typing import Any

import asyncpg

from hashlinks.errors import TransportError
from hashlinks.transport import AppendResult, Transport, TransportMessage, encode_payload
from hashlinks.types import format_timestamp, parse_timestamp

SCHEMA = """
CREATE SEQUENCE IF NOT EXISTS hashlinks_topic_seq START 1000;

CREATE TABLE IF NOT EXISTS hashlinks_topics (
    topic_id text PRIMARY KEY,
    memo text NOT NULL DEFAULT '',
    created_at timestamptz NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS topic_messages (
    topic_id text NOT NULL,
    sequence_number bigint NOT NULL,
    consensus_timestamp timestamptz NOT NULL,
    payer text NOT NULL,
    body text NOT NULL,
    PRIMARY KEY (topic_id, sequence_number)
);

CREATE INDEX IF NOT EXISTS topic_messages_ts_idx
    ON topic_messages (topic_id, consensus_timestamp);
"""


class PostgresTransport(Transport):
    """
    Postgres-backed log.

    Sequence numbers are assigned under a per-topic advisory lock so that two
    writers never hand out the same number. Consensus time never goes
    backwards within a topic.
    """

    def __init__(self, pool: asyncpg.Pool, *, payer: str = "0.0.local"):
        self.pool = pool
        self.payer = payer

    async def ensure_schema(self) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(SCHEMA)

    async def create_topic(self, memo: str = "") -> str:
        try:
            async with self.pool.acquire() as conn:
                num = await conn.fetchval("SELECT nextval('hashlinks_topic_seq')")
                topic_id = f"0.0.{num}"
                await conn.execute(
                    "INSERT INTO hashlinks_topics (topic_id, memo) VALUES ($1, $2)",
                    topic_id,
                    memo,
                )
                return topic_id
        except asyncpg.PostgresError as e:
            raise TransportError(f"Failed to create topic: {e}") from e

    async def append(self, topic_id: str, payload: Any) -> AppendResult:
        body = encode_payload(payload)
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    await conn.execute("SELECT pg_advisory_xact_lock(hashtext($1))", topic_id)
                    row = await conn.fetchrow(
                        """
                        INSERT INTO topic_messages
                            (topic_id, sequence_number, consensus_timestamp, payer, body)
                        SELECT $1,
                               COALESCE(MAX(sequence_number), 0) + 1,
                               GREATEST(now(), COALESCE(MAX(consensus_timestamp), now())),
                               $2,
                               $3
                        FROM topic_messages
                        WHERE topic_id = $1
                        RETURNING sequence_number, consensus_timestamp, payer
                        """,
                        topic_id,
                        self.payer,
                        body,
                    )
        except asyncpg.PostgresError as e:
            raise TransportError(f"Append to {topic_id} failed: {e}") from e

        return AppendResult(
            sequence_number=row["sequence_number"],
            timestamp=format_timestamp(row["consensus_timestamp"]),
            submitter=row["payer"],
        )

    async def read_since(
        self,
        topic_id: str,
        cursor: str | None,
        *,
        limit: int = 100,
    ) -> list[TransportMessage]:
        floor = parse_timestamp(cursor) if cursor is not None else None
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    """
                    SELECT sequence_number, consensus_timestamp, payer, body
                    FROM topic_messages
                    WHERE topic_id = $1
                      AND ($2::timestamptz IS NULL OR consensus_timestamp >= $2)
                    ORDER BY sequence_number ASC
                    LIMIT $3
                    """,
                    topic_id,
                    floor,
                    limit,
                )
        except asyncpg.PostgresError as e:
            raise TransportError(f"Read from {topic_id} failed: {e}") from e
        return [self._to_message(row) for row in rows]

    async def read_latest(self, topic_id: str, *, limit: int = 1) -> list[TransportMessage]:
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    """
                    SELECT sequence_number, consensus_timestamp, payer, body
                    FROM topic_messages
                    WHERE topic_id = $1
                    ORDER BY sequence_number DESC
                    LIMIT $2
                    """,
                    topic_id,
                    limit,
                )
        except asyncpg.PostgresError as e:
            raise TransportError(f"Read from {topic_id} failed: {e}") from e
        return [self._to_message(row) for row in rows]

    async def close(self) -> None:
        """Close the connection pool."""
        await self.pool.close()

    @staticmethod
    def _to_message(row: asyncpg.Record) -> TransportMessage:
        return TransportMessage(
            sequence_number=row["sequence_number"],
            consensus_timestamp=format_timestamp(row["consensus_timestamp"]),
            payer=row["payer"],
            body=row["body"],
        )
