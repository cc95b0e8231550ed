"""Tests for the initial schema migration."""

import importlib.util
from pathlib import Path

import pytest
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import IntegrityError

import cookie_sentinel.persistence.models  # noqa: F401
from cookie_sentinel.persistence.database import Base

MIGRATION = (
    Path(__file__).resolve().parents[2]
    / "alembic" / "versions" / "a3c1f0d2b7e4_initial_scan_engine_schema.py"
)


def load_migration():
    module_spec = importlib.util.spec_from_file_location("initial_scan_engine_schema", MIGRATION)
    module = importlib.util.module_from_spec(module_spec)
    module_spec.loader.exec_module(module)
    return module


def run(engine, step):
    with engine.begin() as conn:
        with Operations.context(MigrationContext.configure(conn)):
            step()


@pytest.fixture
def engine():
    engine = create_engine("sqlite://")
    yield engine
    engine.dispose()


@pytest.fixture
def migration():
    return load_migration()


class TestInitialMigration:

    def test_upgrade_matches_models(self, engine, migration):
        run(engine, migration.upgrade)

        inspector = inspect(engine)
        assert set(inspector.get_table_names()) == {"domains", "cookie_records", "scan_jobs"}
        for table in Base.metadata.sorted_tables:
            migrated = {c['name'] for c in inspector.get_columns(table.name)}
            assert migrated == {c.name for c in table.columns}, table.name

        indexes = {ix['name']: ix for ix in inspector.get_indexes("scan_jobs")}
        assert indexes["uq_scan_jobs_active_domain"]['unique']

    def test_one_active_scan_per_domain(self, engine, migration):
        run(engine, migration.upgrade)
        insert_job = text(
            "INSERT INTO scan_jobs (id, domain_id, status, scan_config, progress, errors, created_at, updated_at) "
            "VALUES (:id, 'd1', :status, '{}', '{}', '[]', CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)"
        )

        with engine.begin() as conn:
            conn.execute(text(
                "INSERT INTO domains (id, domain, scan_config, created_at, updated_at) "
                "VALUES ('d1', 'example.com', '{}', CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)"
            ))
            conn.execute(insert_job, {'id': "j1", 'status': "completed"})
            conn.execute(insert_job, {'id': "j2", 'status': "completed"})
            conn.execute(insert_job, {'id': "j3", 'status': "pending"})

        with pytest.raises(IntegrityError):
            with engine.begin() as conn:
                conn.execute(insert_job, {'id': "j4", 'status': "in_progress"})

    def test_downgrade_drops_everything(self, engine, migration):
        run(engine, migration.upgrade)
        run(engine, migration.downgrade)

        assert inspect(engine).get_table_names() == []
