"""Attribute changes on weak tables to the strong entities they belong to.

Starting from the changed row, every registered edge of the current table is
followed independently:

* ``DIRECT`` edges read the foreign key held by the current row and look the
  referenced row up by its primary key;
* ``INVERSE`` edges look for referenced rows whose ``relation_column`` holds the
  current row's primary key.

A referenced table with a code column ends the branch: exactly one matching row
with a non-null code yields a :class:`Resolution`, anything else yields nothing.
A referenced table without a code column is walked further from its single
matching row. The relationship path is built innermost-first, e.g.
``meter/formula/signal``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.engine import Connection

from audit_history.schemas import RelationDirection
from audit_history.services.metadata_registry import RegistrySnapshot, RelationshipEdge, TableDescriptor
from audit_history.services.row_lookup import RowLookup, row_lookup
from audit_history.services.snapshot_diff import RowSnapshot, serialize_row, serialize_value

logger = logging.getLogger(__name__)

PATH_SEPARATOR = "/"


@dataclass(frozen=True)
class Resolution:
    code_value: str
    resolved_table_id: int
    resolved_table_name: str
    relationship_path: str


class StrongEntityResolver:
    def __init__(
        self,
        snapshot: RegistrySnapshot,
        connection: Connection,
        *,
        lookup: RowLookup = row_lookup,
        max_depth: int = 16,
    ) -> None:
        self.snapshot = snapshot
        self.connection = connection
        self.lookup = lookup
        self.max_depth = max_depth

    def resolve(self, table_id: int, path_so_far: str, row: RowSnapshot) -> list[Resolution]:
        results: list[Resolution] = []
        self._walk(table_id, path_so_far, row, (table_id,), results)
        return results

    def _walk(
        self,
        table_id: int,
        path_so_far: str,
        row: RowSnapshot,
        visited: tuple[int, ...],
        results: list[Resolution],
    ) -> None:
        current = self.snapshot.describe_id(table_id)
        edges = self.snapshot.edges_from(table_id)
        if current is None or not edges:
            logger.debug("No stronger entity registered for table id %s", table_id)
            return

        for edge in edges:
            referenced = self.snapshot.describe_id(edge.strong_table_id)
            if referenced is None:
                continue

            candidates = self._candidates(current, referenced, edge, row)
            if candidates is None:
                continue
            if len(candidates) != 1:
                logger.debug(
                    "Skipping %s -> %s: %s",
                    current.qualified_name,
                    referenced.qualified_name,
                    "ambiguous match" if candidates else "no matching row",
                )
                continue

            hop_path = f"{referenced.table_name}{PATH_SEPARATOR}{path_so_far}"
            match = candidates[0]

            if referenced.is_strong:
                code_value = serialize_value(match.get(referenced.code_column))
                if code_value is None:
                    logger.debug("Matched %s row has no code value", referenced.qualified_name)
                    continue
                results.append(
                    Resolution(
                        code_value=code_value,
                        resolved_table_id=referenced.id,
                        resolved_table_name=referenced.table_name,
                        relationship_path=hop_path,
                    )
                )
                continue

            if referenced.id in visited:
                logger.warning(
                    "Relationship cycle detected at %s (path %s); branch dropped",
                    referenced.qualified_name,
                    hop_path,
                )
                continue
            if len(visited) > self.max_depth:
                logger.warning(
                    "Resolution depth limit %s reached at %s (path %s); branch dropped",
                    self.max_depth,
                    referenced.qualified_name,
                    hop_path,
                )
                continue

            self._walk(referenced.id, hop_path, serialize_row(match), visited + (referenced.id,), results)

    def _candidates(
        self,
        current: TableDescriptor,
        referenced: TableDescriptor,
        edge: RelationshipEdge,
        row: RowSnapshot,
    ) -> list[dict] | None:
        if edge.direction is RelationDirection.DIRECT:
            link_value = row.get(edge.relation_column)
            if link_value is None:
                return None
            key_column = self.lookup.primary_key_column(self.connection, referenced)
            if key_column is None:
                return None
            return self.lookup.fetch_candidates(self.connection, referenced, key_column.name, link_value)

        key_column = self.lookup.primary_key_column(self.connection, current)
        if key_column is None:
            return None
        link_value = row.get(key_column.name)
        if link_value is None:
            return None
        return self.lookup.fetch_candidates(self.connection, referenced, edge.relation_column, link_value)
