import sqlite3
from typing import Iterable

try:
    import psycopg2
    import psycopg2.extras
except ImportError:  # pragma: no cover - optional dependency for postgres
    psycopg2 = None

from flask import current_app, g


QUOTE_STATUSES = (
    "draft",
    "sent",
    "received",
    "pending_approval",
    "approved",
    "rejected",
    "cancelled",
)
DECISION_VALUES = ("approved", "rejected")


class Database:
    def __init__(self, backend: str, connection, identity: str = ""):
        self.backend = backend
        self.identity = identity
        self._conn = connection

    def execute(self, sql: str, params: Iterable | None = None):
        if self.backend == "postgres":
            cursor = self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            if params:
                sql = _convert_qmark_to_pg(sql)
                cursor.execute(sql, list(params))
            else:
                cursor.execute(sql)
            return cursor
        return self._conn.execute(sql, params or ())

    def commit(self):
        self._conn.commit()

    def rollback(self):
        self._conn.rollback()

    def close(self):
        self._conn.close()


def _convert_qmark_to_pg(sql: str) -> str:
    return sql.replace("?", "%s")


def _sql_list(values: Iterable[str]) -> str:
    return ",".join(f"'{value}'" for value in values)


def connect_database(db_path: str) -> Database:
    if db_path.lower().startswith("postgres"):
        if psycopg2 is None:
            raise RuntimeError("psycopg2 nao instalado.")
        conn = psycopg2.connect(db_path)
        return Database("postgres", conn, identity=db_path)

    conn = sqlite3.connect(db_path, timeout=30)
    conn.row_factory = sqlite3.Row
    return Database("sqlite", conn, identity=db_path)


def get_db():
    if "db" not in g:
        db_path = current_app.config["DB_PATH"]
        g.db = connect_database(db_path)
    return g.db


def close_db(_error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()


def init_db():
    db = get_db()
    if db.backend == "postgres":
        _init_db_postgres(db)
    else:
        _init_db_sqlite(db)
    db.commit()


def _init_db_sqlite(db: Database) -> None:
    db.execute(
        """
        CREATE TABLE IF NOT EXISTS tenants (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            subdomain TEXT UNIQUE,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS approval_levels (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            client_id TEXT NOT NULL,
            name TEXT NOT NULL,
            order_level INTEGER NOT NULL DEFAULT 1,
            amount_threshold REAL NOT NULL CHECK (amount_threshold >= 0),
            max_amount_threshold REAL,
            approvers TEXT NOT NULL DEFAULT '[]',
            active INTEGER NOT NULL DEFAULT 1,
            created_by TEXT,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    db.execute(
        f"""
        CREATE TABLE IF NOT EXISTS quotes (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            client_id TEXT NOT NULL,
            title TEXT NOT NULL,
            total REAL NOT NULL DEFAULT 0 CHECK (total >= 0),
            status TEXT NOT NULL DEFAULT 'draft' CHECK (
                status IN ({_sql_list(QUOTE_STATUSES)})
            ),
            approval_level_id INTEGER,
            approval_cycle INTEGER NOT NULL DEFAULT 0,
            created_by TEXT,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (approval_level_id) REFERENCES approval_levels(id)
        )
        """
    )

    db.execute(
        f"""
        CREATE TABLE IF NOT EXISTS approval_decisions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            client_id TEXT NOT NULL,
            quote_id INTEGER NOT NULL,
            level_id INTEGER,
            approver_id TEXT NOT NULL,
            decision TEXT NOT NULL CHECK (decision IN ({_sql_list(DECISION_VALUES)})),
            comment TEXT,
            amount_at_decision TEXT NOT NULL,
            approval_cycle INTEGER NOT NULL,
            previous_hash TEXT NOT NULL DEFAULT '',
            entry_hash TEXT NOT NULL,
            decided_at TEXT NOT NULL,
            UNIQUE (client_id, quote_id, approval_cycle),
            FOREIGN KEY (quote_id) REFERENCES quotes(id)
        )
        """
    )

    db.execute(
        """
        CREATE TRIGGER IF NOT EXISTS trg_approval_decisions_no_update
        BEFORE UPDATE ON approval_decisions
        BEGIN
            SELECT RAISE(ABORT, 'approval_decisions is append-only');
        END
        """
    )
    db.execute(
        """
        CREATE TRIGGER IF NOT EXISTS trg_approval_decisions_no_delete
        BEFORE DELETE ON approval_decisions
        BEGIN
            SELECT RAISE(ABORT, 'approval_decisions is append-only');
        END
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS status_events (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            entity TEXT NOT NULL CHECK (entity IN ('quote','approval_level')),
            entity_id INTEGER NOT NULL,
            from_status TEXT,
            to_status TEXT NOT NULL,
            reason TEXT,
            actor_id TEXT,
            occurred_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            client_id TEXT NOT NULL
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS audit_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            client_id TEXT NOT NULL,
            actor_id TEXT,
            action TEXT NOT NULL CHECK (action IN ('CREATE','UPDATE','DELETE')),
            entity_type TEXT NOT NULL,
            entity_id INTEGER,
            details TEXT NOT NULL DEFAULT '{}',
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS notifications (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            client_id TEXT NOT NULL,
            user_id TEXT NOT NULL,
            title TEXT NOT NULL,
            message TEXT NOT NULL,
            type TEXT NOT NULL,
            action_url TEXT,
            metadata TEXT NOT NULL DEFAULT '{}',
            read_at TEXT,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    _create_indexes(db)


def _init_db_postgres(db: Database) -> None:
    db.execute(
        """
        CREATE TABLE IF NOT EXISTS tenants (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            subdomain TEXT UNIQUE,
            created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS approval_levels (
            id SERIAL PRIMARY KEY,
            client_id TEXT NOT NULL,
            name TEXT NOT NULL,
            order_level INTEGER NOT NULL DEFAULT 1,
            amount_threshold NUMERIC(14,2) NOT NULL CHECK (amount_threshold >= 0),
            max_amount_threshold NUMERIC(14,2),
            approvers TEXT NOT NULL DEFAULT '[]',
            active BOOLEAN NOT NULL DEFAULT TRUE,
            created_by TEXT,
            created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    db.execute(
        f"""
        CREATE TABLE IF NOT EXISTS quotes (
            id SERIAL PRIMARY KEY,
            client_id TEXT NOT NULL,
            title TEXT NOT NULL,
            total NUMERIC(14,2) NOT NULL DEFAULT 0 CHECK (total >= 0),
            status TEXT NOT NULL DEFAULT 'draft' CHECK (
                status IN ({_sql_list(QUOTE_STATUSES)})
            ),
            approval_level_id INTEGER REFERENCES approval_levels(id),
            approval_cycle INTEGER NOT NULL DEFAULT 0,
            created_by TEXT,
            created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    db.execute(
        f"""
        CREATE TABLE IF NOT EXISTS approval_decisions (
            id SERIAL PRIMARY KEY,
            client_id TEXT NOT NULL,
            quote_id INTEGER NOT NULL REFERENCES quotes(id),
            level_id INTEGER,
            approver_id TEXT NOT NULL,
            decision TEXT NOT NULL CHECK (decision IN ({_sql_list(DECISION_VALUES)})),
            comment TEXT,
            amount_at_decision TEXT NOT NULL,
            approval_cycle INTEGER NOT NULL,
            previous_hash TEXT NOT NULL DEFAULT '',
            entry_hash TEXT NOT NULL,
            decided_at TEXT NOT NULL,
            UNIQUE (client_id, quote_id, approval_cycle)
        )
        """
    )

    db.execute(
        """
        CREATE OR REPLACE FUNCTION reject_approval_decision_change()
        RETURNS TRIGGER AS $$
        BEGIN
            RAISE EXCEPTION 'approval_decisions is append-only';
        END;
        $$ LANGUAGE plpgsql;
        """
    )
    db.execute("DROP TRIGGER IF EXISTS trg_approval_decisions_append_only ON approval_decisions")
    db.execute(
        """
        CREATE TRIGGER trg_approval_decisions_append_only
        BEFORE UPDATE OR DELETE ON approval_decisions
        FOR EACH ROW
        EXECUTE FUNCTION reject_approval_decision_change()
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS status_events (
            id SERIAL PRIMARY KEY,
            entity TEXT NOT NULL CHECK (entity IN ('quote','approval_level')),
            entity_id INTEGER NOT NULL,
            from_status TEXT,
            to_status TEXT NOT NULL,
            reason TEXT,
            actor_id TEXT,
            occurred_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
            client_id TEXT NOT NULL
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS audit_logs (
            id SERIAL PRIMARY KEY,
            client_id TEXT NOT NULL,
            actor_id TEXT,
            action TEXT NOT NULL CHECK (action IN ('CREATE','UPDATE','DELETE')),
            entity_type TEXT NOT NULL,
            entity_id INTEGER,
            details TEXT NOT NULL DEFAULT '{}',
            created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS notifications (
            id SERIAL PRIMARY KEY,
            client_id TEXT NOT NULL,
            user_id TEXT NOT NULL,
            title TEXT NOT NULL,
            message TEXT NOT NULL,
            type TEXT NOT NULL,
            action_url TEXT,
            metadata TEXT NOT NULL DEFAULT '{}',
            read_at TIMESTAMP,
            created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    _create_indexes(db)


def _create_indexes(db: Database) -> None:
    db.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_approval_levels_client_active
        ON approval_levels (client_id, active, amount_threshold)
        """
    )
    db.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_quotes_client_status
        ON quotes (client_id, status)
        """
    )
    db.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_approval_decisions_quote
        ON approval_decisions (client_id, quote_id, id)
        """
    )
    db.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_status_events_entity
        ON status_events (client_id, entity, entity_id)
        """
    )
    db.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_notifications_user
        ON notifications (client_id, user_id, read_at)
        """
    )


def table_exists(db: Database, table: str) -> bool:
    if db.backend == "postgres":
        row = db.execute(
            """
            SELECT 1
            FROM information_schema.tables
            WHERE table_schema = 'public' AND table_name = ?
            """,
            (table,),
        ).fetchone()
        return row is not None

    row = db.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name = ?",
        (table,),
    ).fetchone()
    return row is not None
