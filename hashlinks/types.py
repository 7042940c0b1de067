"""
HashLinks - Shared Types

Data classes used across the registries, the content loader and the
resolution engine. These are the contracts that bind the core together.

Entries and assembly state are frozen: the registry only ever adds new
entries, and the assembly fold only ever produces new state objects.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import IntEnum
from typing import Any

from hashlinks.errors import CompositionError

# ---------------------------------------------------------------------------
# Regex patterns
# ---------------------------------------------------------------------------

TOPIC_ID_PATTERN = re.compile(r"^\d+\.\d+\.\d+$")
SHA256_PATTERN = re.compile(r"^[a-f0-9]{64}$")
SEMVER_PATTERN = re.compile(r"^\d+\.\d+\.\d+$")


# ---------------------------------------------------------------------------
# Registry types
# ---------------------------------------------------------------------------


class RegistryType(IntEnum):
    ACTION = 0
    BLOCK = 1
    ASSEMBLY = 2
    HASHLINKS = 3


def topic_memo(registry_type: RegistryType, *, indexed: int = 1, ttl: int = 60) -> str:
    """Topic memo announcing a registry: hcs-12:{indexed}:{ttl}:{type}."""
    return f"hcs-12:{indexed}:{ttl}:{int(registry_type)}"


@dataclass
class RegistryConfig:
    type: RegistryType
    indexed: bool
    ttl: int
    topic_id: str | None
    memo: str


@dataclass
class RegistryStats:
    entry_count: int
    last_sync: str | None
    topic_id: str | None
    registry_type: str


# ---------------------------------------------------------------------------
# Entries
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Entry:
    """
    One materialized message from a topic.
    `data` is the decoded protocol message (a pydantic model).
    """

    id: str
    sequence_number: int
    timestamp: str  # ISO 8601 UTC
    submitter: str
    data: Any
    topic_id: str | None = None

    @property
    def op(self) -> str:
        if isinstance(self.data, dict):
            return self.data.get("op", "")
        return getattr(self.data, "op", "")

    def to_dict(self) -> dict[str, Any]:
        data = self.data.to_payload() if hasattr(self.data, "to_payload") else self.data
        return {
            "id": self.id,
            "sequence_number": self.sequence_number,
            "timestamp": self.timestamp,
            "submitter": self.submitter,
            "topic_id": self.topic_id,
            "data": data,
        }


# ---------------------------------------------------------------------------
# Assembly state
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AssemblyActionRef:
    """An action the assembly uses, by topic id, under a local alias."""

    reference: str
    alias: str
    config: dict[str, Any] | None = None
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"reference": self.reference, "alias": self.alias}
        if self.config is not None:
            d["config"] = self.config
        if self.data is not None:
            d["data"] = self.data
        return d


@dataclass(frozen=True)
class AssemblyBlockRef:
    """
    A block the assembly places.
    `actions` binds local names to action topic ids; `children` names child blocks.
    """

    reference: str
    actions: dict[str, str] | None = None
    attributes: dict[str, Any] | None = None
    children: tuple[str, ...] | None = None
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"reference": self.reference}
        if self.actions is not None:
            d["actions"] = self.actions
        if self.attributes is not None:
            d["attributes"] = self.attributes
        if self.children is not None:
            d["children"] = list(self.children)
        if self.data is not None:
            d["data"] = self.data
        return d


@dataclass(frozen=True)
class AssemblyState:
    """
    The folded result of one assembly topic's operation log.
    Produced only by assembly_registry.fold_assembly().
    """

    topic_id: str
    name: str
    version: str
    created: str
    updated: str
    description: str | None = None
    tags: tuple[str, ...] | None = None
    author: str | None = None
    actions: tuple[AssemblyActionRef, ...] = ()
    blocks: tuple[AssemblyBlockRef, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "topic_id": self.topic_id,
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "tags": list(self.tags) if self.tags is not None else None,
            "author": self.author,
            "actions": [a.to_dict() for a in self.actions],
            "blocks": [b.to_dict() for b in self.blocks],
            "created": self.created,
            "updated": self.updated,
        }


# ---------------------------------------------------------------------------
# Resolution results
# ---------------------------------------------------------------------------


@dataclass
class ResolvedAction:
    alias: str
    reference: str
    config: dict[str, Any] | None = None
    definition: Any = None  # ActionRegistration
    error: str | None = None


@dataclass
class ResolvedBlock:
    reference: str
    actions: dict[str, str] | None = None
    attributes: dict[str, Any] | None = None
    children: tuple[str, ...] | None = None
    definition: Any = None  # BlockDefinition
    template: str | None = None
    error: str | None = None


@dataclass
class ResolvedReferences:
    actions: list[ResolvedAction]
    blocks: list[ResolvedBlock]


@dataclass
class Assembly:
    """
    An assembly loaded from its topic. actions/blocks stay empty until resolved.
    One instance per topic id lives in the engine cache.
    """

    topic_id: str
    state: AssemblyState
    actions: list[ResolvedAction] = field(default_factory=list)
    blocks: list[ResolvedBlock] = field(default_factory=list)
    resolved: bool = False


@dataclass
class CompositionResult:
    valid: bool
    errors: list[str] = field(default_factory=list)

    def raise_for_errors(self) -> None:
        if self.errors:
            raise CompositionError(self.errors)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def is_valid_topic_id(value: str) -> bool:
    """Check for the shard.realm.num form, e.g. 0.0.12345."""
    return isinstance(value, str) and bool(TOPIC_ID_PATTERN.match(value))


def sha256_hex(data: bytes | str) -> str:
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def now_iso() -> str:
    """Current UTC time as ISO 8601 with microseconds (fixed width, sortable)."""
    return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO 8601 timestamp; naive values are taken as UTC."""
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def format_timestamp(dt: datetime) -> str:
    return dt.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
