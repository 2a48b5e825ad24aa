from pathlib import Path

import pytest
from sqlalchemy import text
from sqlmodel import Session, SQLModel, create_engine, select

from cat_api import database, models
from cat_api.migrations import SQL_DIR, apply_migrations, discover, parse_migration_name


def _engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'migrations.db'}")
    SQLModel.metadata.create_all(engine)
    return engine


def test_parse_migration_name():
    mig = parse_migration_name(Path("V1.2__update_scheme_template.sql"))
    assert mig.version == "1.2"
    assert mig.description == "update scheme template"
    assert mig.key == (1, 2)
    assert parse_migration_name(Path("notes.sql")) is None
    assert parse_migration_name(Path("V1__.sql")) is None


def test_discover_orders_numerically(tmp_path):
    for name in ("V1.10__later.sql", "V1.9__earlier.sql", "V2__major.sql", "V1__first.sql", "readme.sql"):
        (tmp_path / name).write_text("SELECT 1;")
    assert [m.version for m in discover(tmp_path)] == ["1", "1.9", "1.10", "2"]


def test_discover_rejects_duplicate_versions(tmp_path):
    (tmp_path / "V1.1__one.sql").write_text("SELECT 1;")
    (tmp_path / "V1.01__other.sql").write_text("SELECT 1;")
    with pytest.raises(RuntimeError):
        discover(tmp_path)


def test_apply_is_idempotent(tmp_path):
    sql_dir = tmp_path / "sql"
    sql_dir.mkdir()
    (sql_dir / "V1__create_note.sql").write_text("CREATE TABLE note (id INTEGER PRIMARY KEY, body TEXT);")
    (sql_dir / "V1.1__seed_note.sql").write_text(
        "INSERT INTO note (id, body) VALUES (1, 'a');\nINSERT INTO note (id, body) VALUES (2, 'b');"
    )
    engine = _engine(tmp_path)

    assert apply_migrations(engine, sql_dir) == ["1", "1.1"]
    assert apply_migrations(engine, sql_dir) == []

    (sql_dir / "V1.2__more_notes.sql").write_text("INSERT INTO note (id, body) VALUES (3, 'c');")
    assert apply_migrations(engine, sql_dir) == ["1.2"]

    with engine.connect() as conn:
        count = conn.execute(text("SELECT COUNT(*) FROM note")).scalar_one()
    with Session(engine) as session:
        scripts = session.exec(select(models.SchemaHistory.script)).all()
    assert count == 3
    assert sorted(scripts) == ["V1.1__seed_note.sql", "V1.2__more_notes.sql", "V1__create_note.sql"]


def test_bundled_migrations_are_recorded():
    versions = [m.version for m in discover(SQL_DIR)]
    assert versions == ["1.0", "1.1", "1.2"]
    with Session(database.engine) as session:
        recorded = session.exec(select(models.SchemaHistory.version)).all()
    assert sorted(recorded) == versions
