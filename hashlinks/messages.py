"""
HashLinks - Protocol Messages

Pydantic models for every hcs-12 payload this core reads or writes, and the
parsers that turn raw dicts into them. Decoding happens once, at the
transport boundary: anything that does not match a known protocol tag and
operation is rejected before it reaches a fold.

Validation is structural (well-formed?) not semantic (does the referenced
topic exist?). Resolution handles the semantic side.
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from hashlinks.errors import ValidationError
from hashlinks.types import SEMVER_PATTERN, SHA256_PATTERN, TOPIC_ID_PATTERN

PROTOCOL = "hcs-12"

KNOWN_OPERATIONS: set[str] = {
    "register",
    "template",
    "pattern",
    "add-action",
    "add-block",
    "update",
}

_TOPIC_ID = TOPIC_ID_PATTERN.pattern
_SHA256 = SHA256_PATTERN.pattern
_SEMVER = SEMVER_PATTERN.pattern


class DecodeError(ValueError):
    """A message body is not a JSON object."""


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class ProtocolMessage(BaseModel):
    """
    Common protocol fields. Every payload carries `p` and `op`.
    Unknown keys from newer writers are dropped, not rejected.
    """

    model_config = {"extra": "ignore", "populate_by_name": True}

    p: Literal["hcs-12"] = PROTOCOL

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True, by_alias=True, mode="json")

    def to_json(self) -> str:
        return json.dumps(self.to_payload(), separators=(",", ":"))


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


class SourceStructure(BaseModel):
    model_config = {"extra": "forbid"}

    format: Literal["tar.gz", "zip", "car"]
    root_manifest: str
    includes_lockfile: bool
    workspace_members: list[str] | None = None


class SourceVerification(BaseModel):
    """Reproducible-build metadata published alongside a WASM action."""

    model_config = {"extra": "forbid"}

    source_t_id: str = Field(pattern=_TOPIC_ID)
    source_hash: str = Field(pattern=_SHA256)
    compiler_version: str
    cargo_version: str
    target: Literal["wasm32-unknown-unknown"]
    profile: str
    build_flags: list[str]
    lockfile_hash: str = Field(pattern=_SHA256)
    source_structure: SourceStructure


class ActionRegistration(ProtocolMessage):
    """
    Immutable record of one WASM action.
    `hash` covers the module info, `wasm_hash` the binary at `t_id`.
    """

    op: Literal["register"] = "register"
    t_id: str = Field(pattern=_TOPIC_ID)
    hash: str = Field(pattern=_SHA256)
    wasm_hash: str = Field(pattern=_SHA256)
    info_t_id: str | None = Field(default=None, pattern=_TOPIC_ID)
    source_verification: SourceVerification | None = None
    previous_version: str | None = None
    migration_notes: str | None = None
    validation_rules: dict[str, Any] | None = None
    m: str | None = None


class ModuleInfo(BaseModel):
    """What a WASM module reports from INFO(). Stored off-topic, hashed into `hash`."""

    model_config = {"extra": "allow"}

    name: str
    version: str
    hashlinks_version: str = "0.1.0"
    creator: str = ""
    purpose: str = ""
    actions: list[dict[str, Any]] = Field(default_factory=list)
    capabilities: list[dict[str, Any]] = Field(default_factory=list)
    plugins: list[dict[str, Any]] = Field(default_factory=list)

    def canonical_json(self) -> str:
        return json.dumps(self.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))


# ---------------------------------------------------------------------------
# Blocks (content, not registry messages)
# ---------------------------------------------------------------------------


class BlockDefinition(BaseModel):
    """
    A block definition as stored by the content store. Read-mostly, so unknown
    keys are kept rather than rejected.
    """

    model_config = {"extra": "allow", "populate_by_name": True}

    name: str
    api_version: int | None = Field(default=None, alias="apiVersion")
    title: str | None = None
    category: str | None = None
    template_t_id: str | None = None
    template_hash: str | None = None
    attributes: dict[str, Any] = Field(default_factory=dict)
    supports: dict[str, Any] = Field(default_factory=dict)
    actions: list[str] | None = None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True, by_alias=True, mode="json")


# ---------------------------------------------------------------------------
# Assembly operations
# ---------------------------------------------------------------------------


class AssemblyRegister(ProtocolMessage):
    op: Literal["register"] = "register"
    name: str = Field(min_length=1)
    version: str = Field(pattern=_SEMVER)
    t_id: str | None = Field(default=None, pattern=_TOPIC_ID)
    title: str | None = None
    category: str | None = None
    description: str | None = None
    tags: list[str] | None = None
    author: str | None = None
    license: str | None = None
    icon: str | None = None
    keywords: list[str] | None = None
    m: str | None = None


class AssemblyAddAction(ProtocolMessage):
    op: Literal["add-action"] = "add-action"
    t_id: str = Field(pattern=_TOPIC_ID)
    alias: str = Field(min_length=1)
    config: dict[str, Any] | None = None
    data: Any = None
    m: str | None = None


class AssemblyAddBlock(ProtocolMessage):
    op: Literal["add-block"] = "add-block"
    block_t_id: str = Field(pattern=_TOPIC_ID)
    actions: dict[str, str] | None = None
    attributes: dict[str, Any] | None = None
    children: list[str] | None = None
    data: Any = None
    m: str | None = None


class AssemblyUpdate(ProtocolMessage):
    op: Literal["update"] = "update"
    description: str | None = None
    tags: list[str] | None = None
    m: str | None = None


AssemblyMessage = Annotated[
    Union[AssemblyRegister, AssemblyAddAction, AssemblyAddBlock, AssemblyUpdate],
    Field(discriminator="op"),
]


# ---------------------------------------------------------------------------
# HashLinks directory
# ---------------------------------------------------------------------------


class DirectoryRegistration(ProtocolMessage):
    """An entry in the global HashLinks directory, pointing at an assembly topic."""

    op: Literal["register"] = "register"
    t_id: str = Field(pattern=_TOPIC_ID)
    name: str = Field(max_length=100)
    description: str | None = Field(default=None, max_length=500)
    tags: list[str] | None = Field(default=None, max_length=10)
    category: str | None = None
    featured: bool | None = None
    icon: str | None = None
    author: str | None = None
    website: str | None = Field(default=None, pattern=r"^https?://\S+$")


# ---------------------------------------------------------------------------
# Parsers
# ---------------------------------------------------------------------------

_action_adapter = TypeAdapter(ActionRegistration)
_assembly_adapter = TypeAdapter(AssemblyMessage)
_directory_adapter = TypeAdapter(DirectoryRegistration)


def _as_dict(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(exclude_none=True, by_alias=True, mode="json")
    return data


def _parse(adapter: TypeAdapter, data: Any, label: str) -> Any:
    try:
        return adapter.validate_python(_as_dict(data))
    except PydanticValidationError as e:
        first = e.errors()[0]
        path = ".".join(str(part) for part in first["loc"])
        raise ValidationError(f"{label} validation failed: {path} - {first['msg']}", field=path) from e


def check_base_shape(data: Any) -> dict[str, Any]:
    """
    Protocol tag present and recognized, operation present and recognized.
    Returns the payload as a dict.
    """
    payload = _as_dict(data)
    if not isinstance(payload, dict):
        raise ValidationError("Payload must be a non-null object")
    if payload.get("p") != PROTOCOL:
        raise ValidationError("Invalid protocol identifier", field="p")
    if payload.get("op") not in KNOWN_OPERATIONS:
        raise ValidationError(f"Invalid operation: {payload.get('op')}", field="op")
    return payload


def parse_action_registration(data: Any) -> ActionRegistration:
    return _parse(_action_adapter, data, "Action registration")


def parse_assembly_message(data: Any) -> AssemblyRegister | AssemblyAddAction | AssemblyAddBlock | AssemblyUpdate:
    return _parse(_assembly_adapter, data, "Assembly message")


def parse_directory_registration(data: Any) -> DirectoryRegistration:
    return _parse(_directory_adapter, data, "Directory registration")


def parse_block_definition(data: Any) -> BlockDefinition:
    return _parse(TypeAdapter(BlockDefinition), data, "Block definition")


def decode_body(body: bytes | str | dict[str, Any]) -> dict[str, Any]:
    """Decode an opaque message body into a JSON object."""
    if isinstance(body, dict):
        return body
    try:
        text = body.decode("utf-8") if isinstance(body, bytes | bytearray) else body
        decoded = json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DecodeError(f"Message body is not valid JSON: {e}") from e
    if not isinstance(decoded, dict):
        raise DecodeError("Message body must be a JSON object")
    return decoded


def is_protocol_message(data: dict[str, Any]) -> bool:
    return data.get("p") == PROTOCOL
