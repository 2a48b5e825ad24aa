"""Versioned SQL migrations for seed and template data.

Scripts live in `cat_api/sql/` and are named `V<version>__<description>.sql`
(e.g. `V1.2__update_scheme_template.sql`). They are applied once each, in
numeric version order, and recorded in the `schema_history` table. Table
definitions themselves come from the SQLModel metadata.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from . import models

SQL_DIR = Path(__file__).resolve().parent / "sql"
_NAME_RE = re.compile(r"^V(?P<version>\d+(?:\.\d+)*)__(?P<description>\w+)\.sql$")

logger = logging.getLogger("cat.migrations")


@dataclass(frozen=True)
class Migration:
    version: str
    description: str
    path: Path

    @property
    def key(self) -> Tuple[int, ...]:
        return tuple(int(part) for part in self.version.split("."))


def parse_migration_name(path: Path) -> Optional[Migration]:
    """Return a `Migration` for a well-formed script name, else `None`."""
    m = _NAME_RE.match(path.name)
    if not m:
        return None
    return Migration(
        version=m.group("version"),
        description=m.group("description").replace("_", " "),
        path=path,
    )


def discover(sql_dir: Path = SQL_DIR) -> List[Migration]:
    """List migrations in `sql_dir` ordered by version (1.10 after 1.9)."""
    found = []
    for path in sql_dir.glob("*.sql"):
        migration = parse_migration_name(path)
        if migration is None:
            logger.warning("skipping migration with unexpected name: %s", path.name)
            continue
        found.append(migration)
    found.sort(key=lambda mig: mig.key)
    versions = [mig.key for mig in found]
    if len(set(versions)) != len(versions):
        raise RuntimeError(f"duplicate migration versions in {sql_dir}")
    return found


def _execute_script(engine: Engine, sql: str) -> None:
    raw = engine.raw_connection()
    try:
        if engine.dialect.name == "sqlite":
            raw.driver_connection.executescript(sql)
        else:
            cur = raw.cursor()
            cur.execute(sql)
            cur.close()
        raw.commit()
    finally:
        raw.close()


def applied_versions(engine: Engine) -> set:
    with Session(engine) as session:
        return set(session.exec(select(models.SchemaHistory.version)).all())


def apply_migrations(engine: Engine, sql_dir: Path = SQL_DIR) -> List[str]:
    """Apply every pending migration and return the versions applied."""
    done = applied_versions(engine)
    applied = []
    for migration in discover(sql_dir):
        if migration.version in done:
            continue
        logger.info("applying migration V%s (%s)", migration.version, migration.description)
        _execute_script(engine, migration.path.read_text(encoding="utf-8"))
        with Session(engine) as session:
            session.add(models.SchemaHistory(
                version=migration.version,
                description=migration.description,
                script=migration.path.name,
            ))
            session.commit()
        applied.append(migration.version)
    return applied
