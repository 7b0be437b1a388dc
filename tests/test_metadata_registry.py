import pytest

from audit_history.schemas import AuditedTableRegister, RelationDirection
from audit_history.services.metadata_registry import (
    PENDING_CHANGES_KEY,
    MetadataRegistry,
    RegistrySnapshot,
    RelationshipEdge,
    TableDescriptor,
)
from audit_history.services.table_registration import register_table


def test_snapshot_reads_descriptors_and_edges(db_session, factory_tables):
    registry = MetadataRegistry()

    snapshot = registry.snapshot(db_session.connection())

    meter = snapshot.describe("main", "meter")
    formula = snapshot.describe("main", "formula")
    assert meter.is_strong and meter.code_column == "code"
    assert not formula.is_strong
    assert snapshot.describe_id(factory_tables["signal"]).table_name == "signal"
    assert snapshot.describe("main", "missing") is None
    assert len(snapshot) == 4

    edges = snapshot.edges_from(formula.id)
    assert [edge.strong_table_id for edge in edges] == [factory_tables["meter"], factory_tables["kpi"]]
    assert all(edge.direction is RelationDirection.INVERSE for edge in edges)
    assert snapshot.edges_from(meter.id) == ()


def test_snapshot_is_cached_until_invalidated(db_session, factory_tables):
    registry = MetadataRegistry()
    connection = db_session.connection()

    first = registry.snapshot(connection)
    assert registry.snapshot(connection) is first

    registry.invalidate()
    second = registry.snapshot(connection)
    assert second is not first
    assert second.generation == first.generation + 1


def test_held_snapshot_does_not_see_later_registrations(db_session, factory_tables):
    registry = MetadataRegistry()
    held = registry.snapshot(db_session.connection())

    register_table(
        db_session,
        AuditedTableRegister(schema_name="main", table_name="kpi", code_column="description"),
    )
    db_session.commit()
    registry.invalidate()

    assert held.describe("main", "kpi").code_column == "name"
    assert registry.snapshot(db_session.connection()).describe("main", "kpi").code_column == "description"


def test_load_racing_an_invalidation_is_not_cached(db_session, factory_tables, monkeypatch):
    registry = MetadataRegistry()
    real_read = RegistrySnapshot.read

    def read_then_invalidate(connection, *, generation=0):
        snapshot = real_read(connection, generation=generation)
        registry.invalidate()
        return snapshot

    monkeypatch.setattr(RegistrySnapshot, "read", staticmethod(read_then_invalidate))

    snapshot = registry.load(db_session.connection())

    assert len(snapshot) == 4
    assert registry.loaded is False


def test_registration_commit_invalidates_shared_registry(db_session, factory_tables):
    from audit_history.services.metadata_registry import metadata_registry

    metadata_registry.snapshot(db_session.connection())
    assert metadata_registry.loaded

    register_table(
        db_session,
        AuditedTableRegister(schema_name="main", table_name="kpi", code_column="name"),
    )
    assert metadata_registry.loaded
    db_session.commit()

    assert metadata_registry.loaded is False


def test_snapshot_read_during_uncommitted_registration_is_not_cached(db_session):
    registry = MetadataRegistry()
    register_table(
        db_session,
        AuditedTableRegister(schema_name="main", table_name="meter", code_column="code"),
    )
    connection = db_session.connection()
    assert connection.info[PENDING_CHANGES_KEY] is True

    pending = registry.snapshot(connection)
    assert pending.describe("main", "meter").code_column == "code"
    assert registry.loaded is False

    db_session.rollback()

    connection = db_session.connection()
    assert PENDING_CHANGES_KEY not in connection.info
    assert registry.snapshot(connection).describe("main", "meter") is None
    assert registry.loaded


def test_registration_rollback_invalidates_shared_registry(db_session, factory_tables):
    from audit_history.services.metadata_registry import metadata_registry

    metadata_registry.snapshot(db_session.connection())
    assert metadata_registry.loaded

    register_table(
        db_session,
        AuditedTableRegister(schema_name="main", table_name="kpi", code_column="description"),
    )
    db_session.rollback()

    assert metadata_registry.loaded is False
    assert metadata_registry.snapshot(db_session.connection()).describe("main", "kpi").code_column == "name"


def test_dangling_edge_is_rejected():
    with pytest.raises(ValueError):
        RegistrySnapshot(
            [TableDescriptor(id=1, schema_name="main", table_name="signal")],
            [RelationshipEdge(1, 2, "formula_id", RelationDirection.DIRECT)],
        )


def test_descriptors_are_ordered_by_qualified_name():
    snapshot = RegistrySnapshot(
        [
            TableDescriptor(id=1, schema_name="b", table_name="a"),
            TableDescriptor(id=2, schema_name="a", table_name="z"),
            TableDescriptor(id=3, schema_name="a", table_name="b"),
        ],
        [],
    )

    assert [item.qualified_name for item in snapshot.descriptors] == ["a.b", "a.z", "b.a"]
