from __future__ import annotations
import logging

from sqlalchemy import create_engine, event, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from .settings import settings

logger = logging.getLogger(__name__)

DATABASE_URL = settings.database_url or "sqlite:///./essaylab.db"

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=_connect_args, future=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
Base = declarative_base()


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
	# SQLite ignores ON DELETE clauses unless foreign keys are switched on per connection
	module = type(dbapi_connection).__module__
	if not module.startswith("sqlite3"):
		return
	cursor = dbapi_connection.cursor()
	cursor.execute("PRAGMA foreign_keys=ON")
	cursor.close()


def get_db():
	db = SessionLocal()
	try:
		yield db
	finally:
		db.close()


# Best-effort lightweight migrations for development (SQLite-friendly)
def ensure_schema(bind=None) -> None:
	bind = bind or engine
	try:
		inspector = inspect(bind)
		tables = set(inspector.get_table_names())
	except Exception:
		logger.warning("Schema inspection failed; skipping column upgrades", exc_info=True)
		return
	if "auth_users" in tables:
		cols = {c["name"] for c in inspector.get_columns("auth_users")}
		with bind.begin() as conn:
			if "email" not in cols:
				conn.exec_driver_sql("ALTER TABLE auth_users ADD COLUMN email VARCHAR(256)")
			if "role" not in cols:
				conn.exec_driver_sql("ALTER TABLE auth_users ADD COLUMN role VARCHAR(32) DEFAULT 'student' NOT NULL")
			if "requests_used" not in cols:
				conn.exec_driver_sql("ALTER TABLE auth_users ADD COLUMN requests_used INTEGER DEFAULT 0 NOT NULL")
			if "requests_limit" not in cols:
				conn.exec_driver_sql("ALTER TABLE auth_users ADD COLUMN requests_limit INTEGER DEFAULT 1000 NOT NULL")
