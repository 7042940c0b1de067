"""
HashLinks - Message Construction

Factory functions for well-formed protocol messages and entries.
Used by callers to build operations before submitting them, and by tests
to build logs concisely.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from itertools import count
from typing import Any, Callable

from hashlinks.messages import (
    ActionRegistration,
    AssemblyAddAction,
    AssemblyAddBlock,
    AssemblyRegister,
    AssemblyUpdate,
)
from hashlinks.types import Entry, format_timestamp, sha256_hex

BASE_TIME = datetime(2024, 1, 1, tzinfo=UTC)


def make_entry(
    seq: int,
    data: Any,
    *,
    submitter: str = "0.0.1001",
    timestamp: str | None = None,
    topic_id: str | None = "0.0.12345",
) -> Entry:
    """
    Build an Entry from minimal inputs.

    seq determines both the id and the sequence number. Without an explicit
    timestamp, entry N lands N seconds after BASE_TIME so timestamps follow
    sequence order.
    """
    ts = timestamp or format_timestamp(BASE_TIME + timedelta(seconds=seq))
    return Entry(
        id=str(seq),
        sequence_number=seq,
        timestamp=ts,
        submitter=submitter,
        data=data,
        topic_id=topic_id,
    )


def register_op(name: str = "test-assembly", version: str = "1.0.0", **fields: Any) -> AssemblyRegister:
    return AssemblyRegister(name=name, version=version, **fields)


def add_action_op(t_id: str, alias: str, **fields: Any) -> AssemblyAddAction:
    return AssemblyAddAction(t_id=t_id, alias=alias, **fields)


def add_block_op(
    block_t_id: str,
    *,
    actions: dict[str, str] | None = None,
    children: list[str] | None = None,
    **fields: Any,
) -> AssemblyAddBlock:
    return AssemblyAddBlock(block_t_id=block_t_id, actions=actions, children=children, **fields)


def update_op(*, description: str | None = None, tags: list[str] | None = None) -> AssemblyUpdate:
    return AssemblyUpdate(description=description, tags=tags)


def action_registration(
    t_id: str = "0.0.88888",
    *,
    hash: str | None = None,
    wasm_hash: str | None = None,
    **fields: Any,
) -> ActionRegistration:
    """Registration with digests derived from t_id unless given."""
    return ActionRegistration(
        t_id=t_id,
        hash=hash or sha256_hex(f"info:{t_id}"),
        wasm_hash=wasm_hash or sha256_hex(f"wasm:{t_id}"),
        **fields,
    )


def ticking_clock(start: datetime = BASE_TIME, step_seconds: int = 1) -> Callable[[], str]:
    """A clock for MemoryTransport that advances by a fixed step on every call."""
    ticks = count()

    def clock() -> str:
        return format_timestamp(start + timedelta(seconds=next(ticks) * step_seconds))

    return clock
