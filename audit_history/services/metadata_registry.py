"""In-memory view of the audited table graph.

Resolution never reads ``audit_metadata`` / ``audit_reference`` row by row; it
works against an immutable :class:`RegistrySnapshot` taken once per capture, so
registrations committed while a capture is in flight cannot change the graph
underneath it.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Iterable

from sqlalchemy import select
from sqlalchemy.engine import Connection
from sqlalchemy.orm import Session

from audit_history.database import SessionLocal
from audit_history.models import AuditMetadata, AuditReference
from audit_history.schemas import RelationDirection

logger = logging.getLogger(__name__)

# Set on a connection whose open transaction holds uncommitted registry writes.
PENDING_CHANGES_KEY = "audit_registry_pending_changes"


@dataclass(frozen=True)
class TableDescriptor:
    id: int
    schema_name: str
    table_name: str
    code_column: str | None = None
    audit_rows: bool = True
    audit_query_text: bool = True
    ignored_columns: tuple[str, ...] = ()

    @property
    def is_strong(self) -> bool:
        return self.code_column is not None

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.table_name}"


@dataclass(frozen=True)
class RelationshipEdge:
    weak_table_id: int
    strong_table_id: int
    relation_column: str
    direction: RelationDirection


class RegistrySnapshot:
    """Immutable adjacency structure over registered tables and their edges."""

    def __init__(
        self,
        descriptors: Iterable[TableDescriptor],
        edges: Iterable[RelationshipEdge],
        *,
        generation: int = 0,
        loaded_at: datetime | None = None,
    ) -> None:
        self.generation = generation
        self.loaded_at = loaded_at or datetime.now(timezone.utc)
        self._by_id: dict[int, TableDescriptor] = {}
        self._by_name: dict[tuple[str, str], TableDescriptor] = {}
        for descriptor in descriptors:
            self._by_id[descriptor.id] = descriptor
            self._by_name[(descriptor.schema_name, descriptor.table_name)] = descriptor

        grouped: dict[int, list[RelationshipEdge]] = defaultdict(list)
        for edge in edges:
            if edge.weak_table_id not in self._by_id or edge.strong_table_id not in self._by_id:
                # Edges always reference registered tables; a dangling one means a torn read.
                raise ValueError(
                    f"Relationship {edge.weak_table_id}->{edge.strong_table_id} references an unregistered table"
                )
            grouped[edge.weak_table_id].append(edge)
        self._edges: dict[int, tuple[RelationshipEdge, ...]] = {
            table_id: tuple(sorted(table_edges, key=lambda item: item.strong_table_id))
            for table_id, table_edges in grouped.items()
        }

    def describe(self, schema_name: str, table_name: str) -> TableDescriptor | None:
        return self._by_name.get((schema_name, table_name))

    def describe_id(self, table_id: int) -> TableDescriptor | None:
        return self._by_id.get(table_id)

    def edges_from(self, table_id: int) -> tuple[RelationshipEdge, ...]:
        return self._edges.get(table_id, ())

    @property
    def descriptors(self) -> tuple[TableDescriptor, ...]:
        return tuple(sorted(self._by_id.values(), key=lambda item: (item.schema_name, item.table_name)))

    def __len__(self) -> int:
        return len(self._by_id)

    @classmethod
    def read(cls, connection: Connection, *, generation: int = 0) -> "RegistrySnapshot":
        """Build a snapshot from the registry tables as visible to ``connection``."""

        metadata_rows = connection.execute(
            select(
                AuditMetadata.id,
                AuditMetadata.schema_name,
                AuditMetadata.table_name,
                AuditMetadata.code_column,
                AuditMetadata.audit_rows,
                AuditMetadata.audit_query_text,
                AuditMetadata.ignored_columns,
            )
        ).all()
        reference_rows = connection.execute(
            select(
                AuditReference.table_id,
                AuditReference.referenced_table_id,
                AuditReference.relation_column,
                AuditReference.relation_direction,
            )
        ).all()

        descriptors = [
            TableDescriptor(
                id=row.id,
                schema_name=row.schema_name,
                table_name=row.table_name,
                code_column=row.code_column or None,
                audit_rows=bool(row.audit_rows),
                audit_query_text=bool(row.audit_query_text),
                ignored_columns=tuple(row.ignored_columns or ()),
            )
            for row in metadata_rows
        ]
        edges = [
            RelationshipEdge(
                weak_table_id=row.table_id,
                strong_table_id=row.referenced_table_id,
                relation_column=row.relation_column,
                direction=RelationDirection(row.relation_direction),
            )
            for row in reference_rows
        ]
        return cls(descriptors, edges, generation=generation)


class MetadataRegistry:
    """Process-wide holder of the current registry snapshot.

    ``invalidate`` must be called after registration changes commit; a load that
    raced with an invalidation is handed to its caller but never cached.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._snapshot: RegistrySnapshot | None = None
        self._generation = 0

    @property
    def loaded(self) -> bool:
        return self._snapshot is not None

    def snapshot(self, connection: Connection) -> RegistrySnapshot:
        current = self._snapshot
        if current is not None and not connection.info.get(PENDING_CHANGES_KEY):
            return current
        return self.load(connection)

    def load(self, connection: Connection) -> RegistrySnapshot:
        with self._lock:
            generation = self._generation
        pending = bool(connection.info.get(PENDING_CHANGES_KEY))
        snapshot = RegistrySnapshot.read(connection, generation=generation)
        with self._lock:
            if pending:
                logger.debug("Not caching registry snapshot read inside an uncommitted registration")
            elif generation == self._generation:
                self._snapshot = snapshot
            else:
                logger.debug("Discarding registry snapshot invalidated while loading")
        logger.info(
            "Loaded audit registry snapshot with %s tables (generation %s)",
            len(snapshot),
            generation,
        )
        return snapshot

    def invalidate(self) -> None:
        with self._lock:
            self._generation += 1
            self._snapshot = None

    def refresh(self, session_factory: Callable[[], Session] = SessionLocal) -> RegistrySnapshot:
        self.invalidate()
        with session_factory() as session:
            return self.load(session.connection())


metadata_registry = MetadataRegistry()
