"""Create tables and apply pending versioned migrations from cat_api/sql/."""
from sqlmodel import SQLModel

from cat_api.config import settings
from cat_api.database import engine
from cat_api.migrations import apply_migrations, discover


def run():
    """Bring the configured database up to date.

    Tables are created from the SQLModel metadata, then every
    `cat_api/sql/V*.sql` script that is not yet recorded in
    `schema_history` is applied in version order.
    """
    print("Using database:", settings.DATABASE_URL)
    SQLModel.metadata.create_all(engine)
    pending = discover()
    applied = apply_migrations(engine)
    for migration in pending:
        state = "applied" if migration.version in applied else "already applied"
        print(f"V{migration.version} {migration.description}: {state}")
    print("Migrations applied.")

if __name__ == '__main__':
    run()
