from audit_history.services.audited_mutations import (
    AuditedMutations,
    AuditedTransaction,
    TransactionContext,
    audited_mutations,
)
from audit_history.services.capture_engine import AuditCaptureEngine, capture_engine
from audit_history.services.entity_resolver import Resolution, StrongEntityResolver
from audit_history.services.event_builder import (
    AuditEvent,
    AuditEventBuilder,
    LedgerWriteError,
    LedgerWriter,
)
from audit_history.services.ledger_queries import events_for_entity, get_event, search_events
from audit_history.services.metadata_registry import (
    MetadataRegistry,
    RegistrySnapshot,
    RelationshipEdge,
    TableDescriptor,
    metadata_registry,
)
from audit_history.services.registry_refresh import RegistryRefreshJob, registry_refresh_job
from audit_history.services.row_lookup import RowLookup, row_lookup
from audit_history.services.snapshot_diff import (
    DiffResult,
    UnsupportedCaptureError,
    compute_diff,
    read_code_value,
    serialize_row,
    serialize_value,
)
from audit_history.services.table_registration import (
    TableRegistrationError,
    find_audited_table,
    list_audited_tables,
    register_table,
    unregister_table,
)

__all__ = [
    "AuditCaptureEngine",
    "AuditEvent",
    "AuditEventBuilder",
    "AuditedMutations",
    "AuditedTransaction",
    "DiffResult",
    "LedgerWriteError",
    "LedgerWriter",
    "MetadataRegistry",
    "RegistryRefreshJob",
    "RegistrySnapshot",
    "RelationshipEdge",
    "Resolution",
    "RowLookup",
    "StrongEntityResolver",
    "TableDescriptor",
    "TableRegistrationError",
    "TransactionContext",
    "UnsupportedCaptureError",
    "audited_mutations",
    "capture_engine",
    "compute_diff",
    "events_for_entity",
    "find_audited_table",
    "get_event",
    "list_audited_tables",
    "metadata_registry",
    "read_code_value",
    "register_table",
    "registry_refresh_job",
    "row_lookup",
    "search_events",
    "serialize_row",
    "serialize_value",
    "unregister_table",
]
