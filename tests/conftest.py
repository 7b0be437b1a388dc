import os
import sys
from pathlib import Path

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import Column, ForeignKey, Integer, MetaData, String, Table, Text, create_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import Session, sessionmaker

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

TEST_DATABASE_URL = "sqlite://"
os.environ.setdefault("DATABASE_URL", TEST_DATABASE_URL)
os.environ.setdefault("REGISTRY_REFRESH_SECONDS", "0")

from audit_history.database import Base, get_db  # noqa: E402
from audit_history.main import app  # noqa: E402
from audit_history.schemas import AuditedTableRegister, TableRelationInput  # noqa: E402
from audit_history.services.metadata_registry import PENDING_CHANGES_KEY, metadata_registry  # noqa: E402
from audit_history.services.row_lookup import row_lookup  # noqa: E402
from audit_history.services.table_registration import register_table  # noqa: E402

# SQLite exposes the default database as the "main" schema.
FACTORY_SCHEMA = "main"

factory_metadata = MetaData()

formula_table = Table(
    "formula",
    factory_metadata,
    Column("id", Integer, primary_key=True),
    Column("expression", Text),
)
signal_table = Table(
    "signal",
    factory_metadata,
    Column("id", Integer, primary_key=True),
    Column("alias", Text),
    Column("formula_id", Integer, ForeignKey("formula.id"), nullable=False),
)
meter_table = Table(
    "meter",
    factory_metadata,
    Column("id", Integer, primary_key=True),
    Column("code", String(50), unique=True),
    Column("description", Text),
    Column("formula_id", Integer, ForeignKey("formula.id")),
)
kpi_table = Table(
    "kpi",
    factory_metadata,
    Column("id", Integer, primary_key=True),
    Column("name", String(50), unique=True),
    Column("description", Text),
    Column("formula_id", Integer, ForeignKey("formula.id")),
)


def _create_testing_engine():
    return create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )


def _create_test_sessionmaker(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


@pytest.fixture(scope="session")
def engine():
    engine = _create_testing_engine()
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(engine) -> Generator[Session, None, None]:
    Base.metadata.drop_all(bind=engine)
    factory_metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    factory_metadata.create_all(bind=engine)
    metadata_registry.invalidate()
    row_lookup.clear()
    connection = engine.connect()
    connection.info.pop(PENDING_CHANGES_KEY, None)

    TestingSessionLocal = _create_test_sessionmaker(connection)
    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.close()
        connection.close()
        metadata_registry.invalidate()
        row_lookup.clear()


@pytest.fixture()
def factory_tables(db_session: Session) -> dict[str, int]:
    """Register the factory schema: meter and kpi are strong, formula and signal are weak."""

    meter = register_table(
        db_session,
        AuditedTableRegister(schema_name=FACTORY_SCHEMA, table_name="meter", code_column="code"),
    )
    kpi = register_table(
        db_session,
        AuditedTableRegister(schema_name=FACTORY_SCHEMA, table_name="kpi", code_column="name"),
    )
    formula = register_table(
        db_session,
        AuditedTableRegister(
            schema_name=FACTORY_SCHEMA,
            table_name="formula",
            relations=[
                TableRelationInput(
                    schema_name=FACTORY_SCHEMA,
                    table_name="meter",
                    relation_column="formula_id",
                    direction="INVERSE",
                ),
                TableRelationInput(
                    schema_name=FACTORY_SCHEMA,
                    table_name="kpi",
                    relation_column="formula_id",
                    direction="INVERSE",
                ),
            ],
        ),
    )
    signal = register_table(
        db_session,
        AuditedTableRegister(
            schema_name=FACTORY_SCHEMA,
            table_name="signal",
            relations=[
                TableRelationInput(
                    schema_name=FACTORY_SCHEMA,
                    table_name="formula",
                    relation_column="formula_id",
                    direction="DIRECT",
                )
            ],
        ),
    )
    db_session.commit()
    return {"meter": meter.id, "kpi": kpi.id, "formula": formula.id, "signal": signal.id}


@pytest.fixture()
def factory_rows(db_session: Session, factory_tables) -> None:
    """Formula 10 feeds meter M1 and kpi K1; formula 20 feeds only meter M2."""

    db_session.execute(
        formula_table.insert(),
        [{"id": 10, "expression": "a + b"}, {"id": 20, "expression": "c * d"}],
    )
    db_session.execute(
        meter_table.insert(),
        [
            {"id": 1, "code": "M1", "description": "Main meter", "formula_id": 10},
            {"id": 2, "code": "M2", "description": "Spare meter", "formula_id": 20},
        ],
    )
    db_session.execute(
        kpi_table.insert(),
        [{"id": 1, "name": "K1", "description": "Efficiency", "formula_id": 10}],
    )
    db_session.execute(
        signal_table.insert(),
        [
            {"id": 7, "alias": "S7", "formula_id": 10},
            {"id": 8, "alias": "S8", "formula_id": 20},
        ],
    )
    db_session.commit()


class PrefixedTestClient(TestClient):
    api_prefix = "/api"

    def request(self, method: str, url: str, *args, **kwargs):  # type: ignore[override]
        if url.startswith("/"):
            url = f"{self.api_prefix}{url}"
        return super().request(method, url, *args, **kwargs)


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    client = PrefixedTestClient(app)
    try:
        yield client
    finally:
        app.dependency_overrides.pop(get_db, None)
