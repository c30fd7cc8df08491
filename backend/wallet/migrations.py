"""Versioned schema setup.

Each migration is applied once, in order, and recorded in ``schema_migrations``.
Startup runs :func:`apply_migrations` and then :func:`seed_defaults`, both of
which are safe to run against an already initialised database.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

from .config import DEV_ADMIN_PASSWORD, Settings
from .persistence import Persistence
from .schemas import LookupKind, Role

logger = logging.getLogger(__name__)

DEFAULT_LOOKUPS: dict[LookupKind, tuple[str, ...]] = {
    LookupKind.property_type: ("سكني", "تجاري", "صناعي"),
    LookupKind.category: ("صيانة", "إيجار", "فواتير", "أخرى"),
}

TABLE_COLUMNS: dict[str, str] = {
    "users": """
          id {pk},
          username text not null unique,
          name text not null,
          email text not null unique,
          password text not null,
          role text not null check (role in ('viewer','entry','admin')),
          created_at text
    """,
    "settings": """
          id {pk},
          name text not null,
          type text not null check (type in ('property_type','category','person')),
          unique (name, type)
    """,
    "operations": """
          id {pk},
          date text not null,
          property_type text,
          reference_number text,
          amount double precision not null,
          category text,
          description text,
          attachment_path text,
          type text not null check (type in ('in','out')),
          created_by integer references users(id) on delete set null,
          created_at text
    """,
    "transfers": """
          id {pk},
          date text not null,
          person_name text not null,
          amount double precision not null,
          attachment_path text,
          created_by integer references users(id) on delete set null,
          created_at text
    """,
    "platforms": """
          id {pk},
          name text not null,
          category text,
          created_by integer references users(id) on delete set null,
          created_at text
    """,
    "services": """
          id {pk},
          platform_id integer not null references platforms(id) on delete cascade,
          name text not null,
          start_date text,
          end_date text,
          attachment_path text,
          created_by integer references users(id) on delete set null,
          created_at text
    """,
}

CREATED_BY_TABLES = ("operations", "transfers", "platforms", "services")

INDEX_STATEMENTS = (
    "create index if not exists idx_operations_date on operations(date)",
    "create index if not exists idx_operations_created on operations(created_at)",
    "create index if not exists idx_transfers_date on transfers(date)",
    "create index if not exists idx_transfers_created on transfers(created_at)",
    "create index if not exists idx_services_platform on services(platform_id)",
)


@dataclass(frozen=True)
class Migration:
    name: str
    apply: Callable[[Connection], None]
    # SQLite table rebuilds must run with foreign key enforcement off, otherwise
    # dropping the old table cascades into the rows that reference it.
    rebuilds_tables: bool = False


def _pk(conn: Connection) -> str:
    if conn.dialect.name == "sqlite":
        return "integer primary key autoincrement"
    return "serial primary key"


def _table_sql(conn: Connection, table: str, name: str | None = None, if_not_exists: bool = False) -> str:
    guard = "if not exists " if if_not_exists else ""
    columns = TABLE_COLUMNS[table].format(pk=_pk(conn))
    return f"create table {guard}{name or table} ({columns})"


def _sqlite_table_ddl(conn: Connection, table: str) -> str | None:
    row = conn.execute(
        text("select sql from sqlite_master where type = 'table' and name = :name"),
        {"name": table},
    ).first()
    return row[0] if row else None


def _column_names(conn: Connection, table: str) -> list[str]:
    return [row[1] for row in conn.execute(text(f"pragma table_info({table})")).fetchall()]


def _set_sqlite_foreign_keys(conn: Connection, enabled: bool) -> None:
    if conn.dialect.name != "sqlite":
        return
    # the pragma is ignored inside a transaction
    conn.exec_driver_sql(f"PRAGMA foreign_keys={'ON' if enabled else 'OFF'}")
    conn.commit()


def create_core_tables(conn: Connection) -> None:
    for table in TABLE_COLUMNS:
        conn.execute(text(_table_sql(conn, table, if_not_exists=True)))
    for stmt in INDEX_STATEMENTS:
        conn.execute(text(stmt))


def add_person_lookup_kind(conn: Connection) -> None:
    # Only SQLite files written by older builds can carry the two-kind settings table.
    if conn.dialect.name != "sqlite":
        return
    ddl = _sqlite_table_ddl(conn, "settings")
    if ddl is None or "'person'" in ddl:
        return
    logger.info("Rebuilding settings table to support the person kind")
    conn.execute(text("alter table settings rename to settings_old"))
    conn.execute(text(_table_sql(conn, "settings")))
    conn.execute(text("insert into settings (id, name, type) select id, name, type from settings_old"))
    conn.execute(text("drop table settings_old"))


def _rebuild_with_created_by_set_null(conn: Connection, table: str) -> None:
    staging = f"{table}_new"
    conn.execute(text(_table_sql(conn, table, name=staging)))
    old_columns = set(_column_names(conn, table))
    columns = [column for column in _column_names(conn, staging) if column in old_columns]
    selected = [
        f"(select id from users where id = {table}.created_by)" if column == "created_by" else column
        for column in columns
    ]
    conn.execute(
        text(f"insert into {staging} ({', '.join(columns)}) select {', '.join(selected)} from {table}")
    )
    conn.execute(text(f"drop table {table}"))
    conn.execute(text(f"alter table {staging} rename to {table}"))


def set_created_by_null_on_delete(conn: Connection) -> None:
    # Tables written by older builds reference users without an on delete action.
    if conn.dialect.name != "sqlite":
        return
    for table in CREATED_BY_TABLES:
        ddl = _sqlite_table_ddl(conn, table)
        if ddl is None or "on delete set null" in " ".join(ddl.lower().split()):
            continue
        logger.info("Rebuilding %s so deleted users leave created_by empty", table)
        _rebuild_with_created_by_set_null(conn, table)
    for stmt in INDEX_STATEMENTS:
        conn.execute(text(stmt))


MIGRATIONS: list[Migration] = [
    Migration("0001_core_tables", create_core_tables),
    Migration("0002_settings_person_kind", add_person_lookup_kind),
    Migration("0003_created_by_set_null", set_created_by_null_on_delete, rebuilds_tables=True),
]


def apply_migrations(engine: Engine, migrations: list[Migration] | None = None) -> list[str]:
    with engine.begin() as conn:
        conn.execute(
            text(
                """
                create table if not exists schema_migrations (
                  filename text primary key,
                  applied_at text not null
                )
                """
            )
        )
        applied = {row[0] for row in conn.execute(text("select filename from schema_migrations")).fetchall()}

    applied_now: list[str] = []
    for migration in migrations or MIGRATIONS:
        if migration.name in applied:
            continue
        with engine.connect() as conn:
            if migration.rebuilds_tables:
                _set_sqlite_foreign_keys(conn, False)
            try:
                with conn.begin():
                    migration.apply(conn)
                    conn.execute(
                        text("insert into schema_migrations (filename, applied_at) values (:filename, :applied_at)"),
                        {"filename": migration.name, "applied_at": datetime.now(timezone.utc).isoformat()},
                    )
            finally:
                if migration.rebuilds_tables:
                    _set_sqlite_foreign_keys(conn, True)
        logger.info("Applied migration %s", migration.name)
        applied_now.append(migration.name)
    return applied_now


def seed_defaults(persistence: Persistence, settings: Settings) -> bool:
    """Create the bootstrap admin and default lookup rows on a fresh database."""
    if persistence.count_users():
        return False
    persistence.create_user(
        username=settings.admin_username,
        name=settings.admin_name,
        email=settings.admin_email,
        password=settings.admin_password,
        role=Role.admin,
    )
    for kind, names in DEFAULT_LOOKUPS.items():
        for name in names:
            persistence.add_setting(name, kind, ignore_existing=True)
    logger.info("Seeded admin user %s and default lookup entries", settings.admin_username)
    if settings.admin_password == DEV_ADMIN_PASSWORD:
        logger.warning("Admin user %s uses the default password; set ADMIN_PASSWORD", settings.admin_username)
    return True
