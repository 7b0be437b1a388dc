from __future__ import annotations

import logging

from sqlalchemy.engine import Connection

from audit_history.config import Settings, get_settings
from audit_history.schemas import CapturedMutation
from audit_history.services.entity_resolver import StrongEntityResolver
from audit_history.services.event_builder import AuditEvent, AuditEventBuilder, LedgerWriter
from audit_history.services.metadata_registry import MetadataRegistry, metadata_registry
from audit_history.services.row_lookup import RowLookup, row_lookup
from audit_history.services.snapshot_diff import compute_diff, read_code_value

logger = logging.getLogger(__name__)


class AuditCaptureEngine:
    """Turn one captured mutation into zero or more ledger rows.

    All reads and the ledger insert run on ``connection``; the caller owns the
    transaction, so the audit rows commit or roll back with the mutation.
    """

    def __init__(
        self,
        registry: MetadataRegistry = metadata_registry,
        *,
        lookup: RowLookup = row_lookup,
        builder: AuditEventBuilder | None = None,
        writer: LedgerWriter | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.registry = registry
        self.lookup = lookup
        self.builder = builder or AuditEventBuilder()
        self.writer = writer or LedgerWriter()
        self._settings = settings

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    def capture(self, connection: Connection, mutation: CapturedMutation) -> list[int]:
        snapshot = self.registry.snapshot(connection)
        descriptor = snapshot.describe(mutation.schema_name, mutation.table_name)
        if descriptor is None:
            logger.warning(
                "Ignoring %s on unregistered table %s.%s",
                mutation.action.value,
                mutation.schema_name,
                mutation.table_name,
            )
            return []

        settings = self.settings
        excluded = (
            set(mutation.excluded_columns)
            | set(descriptor.ignored_columns)
            | set(settings.default_excluded_columns)
        )
        diff = compute_diff(
            mutation.action,
            mutation.level,
            old_row=mutation.old_row,
            new_row=mutation.new_row,
            excluded_columns=excluded,
        )
        if diff.suppressed:
            return []

        if diff.statement_only:
            if not settings.record_unattributed_statements:
                logger.debug(
                    "Dropping statement-level %s on %s", mutation.action.value, descriptor.qualified_name
                )
                return []
            return [self._append(connection, self.builder.build(mutation, descriptor, diff))]

        code_value = read_code_value(diff.anchor_row, descriptor.code_column)
        if code_value is not None:
            event = self.builder.build(
                mutation,
                descriptor,
                diff,
                code_value=code_value,
                resolved_table_name=descriptor.table_name,
            )
            return [self._append(connection, event)]

        resolver = StrongEntityResolver(
            snapshot,
            connection,
            lookup=self.lookup,
            max_depth=settings.max_resolution_depth,
        )
        resolutions = resolver.resolve(descriptor.id, descriptor.table_name, diff.anchor_row)
        if not resolutions:
            logger.info(
                "No strong entity resolved for %s on %s; change not recorded",
                mutation.action.value,
                descriptor.qualified_name,
            )
            return []

        return [
            self._append(
                connection,
                self.builder.build(
                    mutation,
                    descriptor,
                    diff,
                    code_value=resolution.code_value,
                    resolved_table_name=resolution.resolved_table_name,
                    relationship_path=resolution.relationship_path,
                ),
            )
            for resolution in resolutions
        ]

    def _append(self, connection: Connection, event: AuditEvent) -> int:
        return self.writer.append(connection, event)


capture_engine = AuditCaptureEngine()
