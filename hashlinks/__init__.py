"""
HashLinks - registry replay and assembly resolution.

Components:
  registry           generic replay engine: (state, entry) -> state over one topic
  action_registry    WASM action registrations, indexed by hash
  assembly_registry  assembly operations folded into AssemblyState
  content            block definitions and templates, digest-verified
  engine             loads, resolves and validates assemblies

Transports:
  MemoryTransport, MirrorNodeTransport, PostgresTransport
"""

from hashlinks.action_registry import ActionRegistry
from hashlinks.assembly_registry import AssemblyRegistry, fold_assembly
from hashlinks.content import BlockLoader, HttpContentStore, MemoryContentStore
from hashlinks.directory import DirectoryRegistry
from hashlinks.engine import AssemblyEngine
from hashlinks.errors import (
    CompositionError,
    HashLinksError,
    IntegrityError,
    NotFoundError,
    ReferenceResolutionError,
    SyncError,
    TransportError,
    ValidationError,
)
from hashlinks.mirror_node import MirrorNodeTransport
from hashlinks.registry import Projection, Registry, replay
from hashlinks.transport import MemoryTransport

__all__ = [
    "Registry",
    "Projection",
    "replay",
    "ActionRegistry",
    "AssemblyRegistry",
    "fold_assembly",
    "DirectoryRegistry",
    "BlockLoader",
    "MemoryContentStore",
    "HttpContentStore",
    "AssemblyEngine",
    "MemoryTransport",
    "MirrorNodeTransport",
    "HashLinksError",
    "ValidationError",
    "TransportError",
    "SyncError",
    "NotFoundError",
    "ReferenceResolutionError",
    "IntegrityError",
    "CompositionError",
]
