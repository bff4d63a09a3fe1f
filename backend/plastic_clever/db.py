from __future__ import annotations
from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import sessionmaker, declarative_base
from .settings import settings


DATABASE_URL = settings.database_url or "sqlite:///./plastic_clever.db"

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=_connect_args, future=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
Base = declarative_base()


def get_db():
	db = SessionLocal()
	try:
		yield db
	finally:
		db.close()


# Columns added after the first release: (table, column, DDL type)
_ADDED_COLUMNS = [
	("audit_responses", "round_number", "INTEGER DEFAULT 1 NOT NULL"),
	("reduction_promises", "round_number", "INTEGER DEFAULT 1 NOT NULL"),
	("schools", "legacy_evidence_count", "INTEGER DEFAULT 0 NOT NULL"),
	("school_users", "verification_method", "VARCHAR(32)"),
	("school_users", "verification_evidence", "TEXT"),
	("school_users", "invited_by", "VARCHAR(36)"),
	("users", "welcome_email_sent_at", "TIMESTAMP"),
]


# Best-effort lightweight migrations for existing databases
def ensure_schema(bind=None) -> list[str]:
	bind = bind or engine
	applied: list[str] = []
	inspector = inspect(bind)
	tables = set(inspector.get_table_names())
	for table, column, ddl in _ADDED_COLUMNS:
		if table not in tables:
			continue
		cols = {c["name"] for c in inspector.get_columns(table)}
		if column in cols:
			continue
		with bind.begin() as conn:
			conn.exec_driver_sql(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}")
		applied.append(f"{table}.{column}")
	return applied
