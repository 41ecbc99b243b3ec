import contextlib
import logging
import sqlite3
from typing import Iterable

import psycopg2
import psycopg2.extras
from flask import current_app, g


class Database:
    def __init__(self, backend: str, connection):
        self.backend = backend
        self._conn = connection
        self._tx_depth = 0

    @property
    def in_transaction(self) -> bool:
        return self._tx_depth > 0

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
        if self.backend == "postgres":
            # autocommit connection: only explicit transactions need closing.
            return
        self._conn.commit()

    def rollback(self):
        if self.backend == "postgres":
            return
        self._conn.rollback()

    @contextlib.contextmanager
    def transaction(self):
        """All-or-nothing unit of work. Nested calls join the outer transaction."""
        if self._tx_depth > 0:
            self._tx_depth += 1
            try:
                yield self
            finally:
                self._tx_depth -= 1
            return

        self._begin()
        self._tx_depth = 1
        try:
            yield self
        except BaseException:
            self._tx_depth = 0
            self._rollback_quietly()
            raise
        self._tx_depth = 0
        self._commit_transaction()

    def _begin(self) -> None:
        if self.backend == "postgres":
            self._conn.cursor().execute("BEGIN")
            return
        if self._conn.in_transaction:
            self._conn.commit()
        # Take the write lock up front so read-modify-write sequences are serialized.
        self._conn.execute("BEGIN IMMEDIATE")

    def _commit_transaction(self) -> None:
        if self.backend == "postgres":
            self._conn.cursor().execute("COMMIT")
            return
        self._conn.commit()

    def _rollback_quietly(self) -> None:
        try:
            if self.backend == "postgres":
                self._conn.cursor().execute("ROLLBACK")
            else:
                self._conn.rollback()
        except (sqlite3.Error, psycopg2.Error):
            logging.getLogger("quotedesk").exception("db_rollback_failed")

    def close(self):
        self._conn.close()


def _convert_qmark_to_pg(sql: str) -> str:
    return sql.replace("?", "%s")


def connect_database(db_path: str) -> Database:
    if db_path.lower().startswith("postgres"):
        conn = psycopg2.connect(db_path)
        conn.autocommit = True
        return Database("postgres", conn)

    conn = sqlite3.connect(db_path, timeout=30.0)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return Database("sqlite", conn)


def get_db():
    if "db" not in g:
        g.db = connect_database(current_app.config["DB_PATH"])
    return g.db


def close_db(_error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()


def init_db():
    init_schema(get_db())


def init_schema(db: Database) -> None:
    if db.backend == "postgres":
        _init_db_postgres(db)
        return
    _init_db_sqlite(db)
    db.commit()


SCHEMA_TABLES = ("status_events", "quote_items", "quotes", "user_profiles")


def _init_db_sqlite(db) -> None:
    db.execute(
        """
        CREATE TABLE IF NOT EXISTS user_profiles (
            id TEXT PRIMARY KEY,
            full_name TEXT,
            role TEXT NOT NULL CHECK (role IN ('customer', 'vendor', 'admin', 'super_admin')),
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS quotes (
            id TEXT PRIMARY KEY,
            quote_number TEXT NOT NULL UNIQUE,
            status TEXT NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'sent', 'accepted', 'rejected', 'revised', 'cancelled')),
            client_id TEXT NOT NULL,
            vendor_id TEXT NOT NULL,
            notes TEXT,
            total_amount TEXT NOT NULL DEFAULT '0.00',
            valid_until TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS quote_items (
            id TEXT PRIMARY KEY,
            quote_id TEXT NOT NULL REFERENCES quotes(id) ON DELETE CASCADE,
            product_name TEXT NOT NULL,
            quantity INTEGER NOT NULL CHECK (quantity > 0),
            price TEXT NOT NULL,
            position INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS status_events (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            entity TEXT NOT NULL,
            entity_id TEXT NOT NULL,
            from_status TEXT,
            to_status TEXT NOT NULL,
            reason TEXT,
            actor_id TEXT,
            actor_role TEXT,
            occurred_at TEXT NOT NULL
        )
        """
    )

    _create_indexes(db)


def _init_db_postgres(db) -> None:
    db.execute(
        """
        CREATE TABLE IF NOT EXISTS user_profiles (
            id TEXT PRIMARY KEY,
            full_name TEXT,
            role TEXT NOT NULL CHECK (role IN ('customer', 'vendor', 'admin', 'super_admin')),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS quotes (
            id TEXT PRIMARY KEY,
            quote_number TEXT NOT NULL UNIQUE,
            status TEXT NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'sent', 'accepted', 'rejected', 'revised', 'cancelled')),
            client_id TEXT NOT NULL,
            vendor_id TEXT NOT NULL,
            notes TEXT,
            total_amount NUMERIC(12, 2) NOT NULL DEFAULT 0,
            valid_until TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL,
            updated_at TIMESTAMPTZ NOT NULL
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS quote_items (
            id TEXT PRIMARY KEY,
            quote_id TEXT NOT NULL REFERENCES quotes(id) ON DELETE CASCADE,
            product_name TEXT NOT NULL,
            quantity INTEGER NOT NULL CHECK (quantity > 0),
            price NUMERIC(12, 2) NOT NULL CHECK (price >= 0),
            position INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL,
            updated_at TIMESTAMPTZ NOT NULL
        )
        """
    )

    db.execute(
        """
        CREATE TABLE IF NOT EXISTS status_events (
            id BIGSERIAL PRIMARY KEY,
            entity TEXT NOT NULL,
            entity_id TEXT NOT NULL,
            from_status TEXT,
            to_status TEXT NOT NULL,
            reason TEXT,
            actor_id TEXT,
            actor_role TEXT,
            occurred_at TIMESTAMPTZ NOT NULL
        )
        """
    )

    _create_indexes(db)


def _create_indexes(db) -> None:
    db.execute("CREATE INDEX IF NOT EXISTS idx_quotes_client ON quotes (client_id, created_at)")
    db.execute("CREATE INDEX IF NOT EXISTS idx_quotes_vendor ON quotes (vendor_id, created_at)")
    db.execute("CREATE INDEX IF NOT EXISTS idx_quote_items_quote ON quote_items (quote_id)")
    db.execute("CREATE INDEX IF NOT EXISTS idx_status_events_entity ON status_events (entity, entity_id, id)")
