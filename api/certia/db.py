import logging
from sqlmodel import SQLModel, create_engine, Session
from sqlalchemy import text, inspect
from .config import DATABASE_URL

logger = logging.getLogger(__name__)

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, echo=False, pool_pre_ping=True, connect_args=_connect_args)

def init_db():
    from .models import Profile, Template, Submission, SubmissionFile, SubmissionEvent, SignatureTransaction
    SQLModel.metadata.create_all(engine)
    # databases created before optimistic locking and the one-transaction rule
    add_missing_column("submission", "version", "INTEGER NOT NULL DEFAULT 1")
    add_unique_index("submission", "signature_transaction_id", "uq_submission_signature_tx")

def get_session():
    with Session(engine) as session:
        yield session

def add_missing_column(table: str, column: str, ddl: str) -> bool:
    try:
        existing = {col["name"] for col in inspect(engine).get_columns(table)}
    except Exception:
        return False
    if column in existing:
        return False
    with engine.begin() as conn:
        conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}"))
    logger.info("added column %s.%s", table, column)
    return True

def add_unique_index(table: str, column: str, name: str) -> bool:
    """Enforce uniqueness of non-null values unless existing rows already violate it."""
    try:
        indexes = inspect(engine).get_indexes(table)
    except Exception:
        return False
    if any(idx.get("name") == name for idx in indexes):
        return False
    with engine.begin() as conn:
        duplicates = conn.execute(
            text(
                f"SELECT {column} FROM {table} WHERE {column} IS NOT NULL "
                f"GROUP BY {column} HAVING COUNT(*) > 1"
            )
        ).fetchall()
        if duplicates:
            logger.warning(
                "not creating %s: duplicate %s.%s values %s",
                name,
                table,
                column,
                ", ".join(str(row[0]) for row in duplicates),
            )
            return False
        conn.execute(text(f"CREATE UNIQUE INDEX IF NOT EXISTS {name} ON {table}({column})"))
    return True
