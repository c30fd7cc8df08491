from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .auth_utils import dummy_hash, hash_password, verify_password
from .errors import Conflict, StorageError
from .forms import OperationInput, ServiceInput, TransferInput
from .schemas import LookupKind, Role

logger = logging.getLogger(__name__)

BACKUP_TABLES = ("settings", "operations", "transfers", "platforms", "services")


def _to_float(value: Decimal | None) -> float | None:
    return float(value) if value is not None else None


def _now_text() -> str:
    # Same shape as SQLite's CURRENT_TIMESTAMP so old and new rows sort together.
    return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S.%f")


def _contains_pattern(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Persistence:
    def __init__(self, database_url: str) -> None:
        self.engine: Engine = create_engine(database_url, future=True, pool_pre_ping=True)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)

    def dispose(self) -> None:
        self.engine.dispose()

    def _run(
        self,
        sql: str,
        params: dict[str, Any] | None = None,
        conflict_message: str = "record conflicts with existing data",
    ) -> list[dict[str, Any]]:
        try:
            with self.engine.begin() as conn:
                result = conn.execute(text(sql), params or {})
                if result.returns_rows:
                    return [dict(row._mapping) for row in result.fetchall()]
                return []
        except IntegrityError as exc:
            logger.info("Integrity violation: %s", exc.orig)
            raise Conflict(conflict_message) from exc
        except SQLAlchemyError as exc:
            logger.exception("Database error")
            raise StorageError(f"database error: {exc.__class__.__name__}") from exc

    def _exists(self, table: str, entity_id: int) -> bool:
        rows = self._run(f"select 1 as ok from {table} where id = :id limit 1", {"id": entity_id})
        return bool(rows)

    # users

    def count_users(self) -> int:
        return int(self._run("select count(*) as total from users")[0]["total"])

    def create_user(self, username: str, name: str, email: str, password: str, role: Role) -> dict[str, Any]:
        row = self._run(
            """
            insert into users (username, name, email, password, role, created_at)
            values (:username, :name, :email, :password, :role, :created_at)
            returning id, username, name, email, role, created_at
            """,
            {
                "username": username,
                "name": name,
                "email": email,
                "password": hash_password(password),
                "role": Role(role).value,
                "created_at": _now_text(),
            },
            conflict_message="username or email already exists",
        )[0]
        return row

    def authenticate_user(self, username: str, password: str) -> dict[str, Any] | None:
        rows = self._run(
            "select id, username, name, email, role, password from users where username = :username limit 1",
            {"username": username},
        )
        if not rows:
            # same hashing cost as a wrong password for a known user
            verify_password(password, dummy_hash())
            return None
        row = rows[0]
        if not verify_password(password, row.pop("password")):
            return None
        return row

    def list_users(self) -> list[dict[str, Any]]:
        return self._run("select id, username, name, email, role, created_at from users order by id desc")

    def delete_user(self, user_id: int) -> None:
        self._run("delete from users where id = :id", {"id": user_id})

    # lookup entries

    def list_settings(self) -> list[dict[str, Any]]:
        return self._run("select id, name, type from settings order by type, name")

    def add_setting(self, name: str, kind: LookupKind, ignore_existing: bool = False) -> int | None:
        suffix = " on conflict do nothing" if ignore_existing else ""
        rows = self._run(
            f"insert into settings (name, type) values (:name, :type){suffix} returning id",
            {"name": name, "type": LookupKind(kind).value},
            conflict_message="already exists",
        )
        return rows[0]["id"] if rows else None

    def delete_setting(self, setting_id: int) -> None:
        self._run("delete from settings where id = :id", {"id": setting_id})

    # operations

    def list_operations(
        self,
        q: str = "",
        category: str | None = None,
        property_type: str | None = None,
    ) -> list[dict[str, Any]]:
        sql = """
            select o.*, u.name as created_by_name
            from operations o
            left join users u on u.id = o.created_by
            where (
              coalesce(o.reference_number, '') like :q escape '\\'
              or coalesce(o.description, '') like :q escape '\\'
            )
        """
        params: dict[str, Any] = {"q": _contains_pattern(q)}
        if category:
            sql += " and o.category = :category"
            params["category"] = category
        if property_type:
            sql += " and o.property_type = :property_type"
            params["property_type"] = property_type
        sql += " order by o.date desc, o.id desc"
        return self._run(sql, params)

    def get_operation(self, operation_id: int) -> dict[str, Any] | None:
        rows = self._run("select * from operations where id = :id limit 1", {"id": operation_id})
        return rows[0] if rows else None

    def create_operation(self, payload: OperationInput, created_by: int) -> int:
        row = self._run(
            """
            insert into operations (
              date, property_type, reference_number, amount, category, description,
              attachment_path, type, created_by, created_at
            )
            values (
              :date, :property_type, :reference_number, :amount, :category, :description,
              :attachment_path, :type, (select id from users where id = :created_by), :created_at
            )
            returning id
            """,
            {
                "date": payload.date,
                "property_type": payload.property_type,
                "reference_number": payload.reference_number,
                "amount": _to_float(payload.amount),
                "category": payload.category,
                "description": payload.description,
                "attachment_path": payload.attachment_path,
                "type": payload.type.value,
                "created_by": created_by,
                "created_at": _now_text(),
            },
        )[0]
        return int(row["id"])

    def update_operation(self, operation_id: int, payload: OperationInput) -> None:
        self._run(
            """
            update operations
            set date = :date, property_type = :property_type, reference_number = :reference_number,
                amount = :amount, category = :category, description = :description,
                attachment_path = :attachment_path, type = :type
            where id = :id
            """,
            {
                "id": operation_id,
                "date": payload.date,
                "property_type": payload.property_type,
                "reference_number": payload.reference_number,
                "amount": _to_float(payload.amount),
                "category": payload.category,
                "description": payload.description,
                "attachment_path": payload.attachment_path,
                "type": payload.type.value,
            },
        )

    def delete_operation(self, operation_id: int) -> None:
        self._run("delete from operations where id = :id", {"id": operation_id})

    # transfers

    def list_transfers(self, person_name: str | None = None) -> list[dict[str, Any]]:
        sql = """
            select t.*, u.name as created_by_name
            from transfers t
            left join users u on u.id = t.created_by
        """
        params: dict[str, Any] = {}
        if person_name:
            sql += " where t.person_name = :person_name"
            params["person_name"] = person_name
        sql += " order by t.date desc, t.id desc"
        return self._run(sql, params)

    def create_transfer(self, payload: TransferInput, created_by: int) -> int:
        row = self._run(
            """
            insert into transfers (date, person_name, amount, attachment_path, created_by, created_at)
            values (:date, :person_name, :amount, :attachment_path, (select id from users where id = :created_by), :created_at)
            returning id
            """,
            {
                "date": payload.date,
                "person_name": payload.person_name,
                "amount": _to_float(payload.amount),
                "attachment_path": payload.attachment_path,
                "created_by": created_by,
                "created_at": _now_text(),
            },
        )[0]
        return int(row["id"])

    def delete_transfer(self, transfer_id: int) -> None:
        self._run("delete from transfers where id = :id", {"id": transfer_id})

    # platforms and services

    def list_platforms(self) -> list[dict[str, Any]]:
        platforms = self._run(
            """
            select p.*, u.name as created_by_name
            from platforms p
            left join users u on u.id = p.created_by
            order by p.id desc
            """
        )
        services_by_platform: dict[int, list[dict[str, Any]]] = {}
        for service in self._run("select * from services order by id desc"):
            services_by_platform.setdefault(service["platform_id"], []).append(service)
        return [{**platform, "services": services_by_platform.get(platform["id"], [])} for platform in platforms]

    def platform_exists(self, platform_id: int) -> bool:
        return self._exists("platforms", platform_id)

    def create_platform(self, name: str, category: str | None, created_by: int) -> int:
        row = self._run(
            """
            insert into platforms (name, category, created_by, created_at)
            values (:name, :category, (select id from users where id = :created_by), :created_at)
            returning id
            """,
            {"name": name, "category": category, "created_by": created_by, "created_at": _now_text()},
        )[0]
        return int(row["id"])

    def delete_platform(self, platform_id: int) -> None:
        # services go with it through the on delete cascade foreign key
        self._run("delete from platforms where id = :id", {"id": platform_id})

    def create_service(self, payload: ServiceInput, created_by: int) -> int:
        row = self._run(
            """
            insert into services (platform_id, name, start_date, end_date, attachment_path, created_by, created_at)
            values (:platform_id, :name, :start_date, :end_date, :attachment_path, (select id from users where id = :created_by), :created_at)
            returning id
            """,
            {
                "platform_id": payload.platform_id,
                "name": payload.name,
                "start_date": payload.start_date,
                "end_date": payload.end_date,
                "attachment_path": payload.attachment_path,
                "created_by": created_by,
                "created_at": _now_text(),
            },
        )[0]
        return int(row["id"])

    def delete_service(self, service_id: int) -> None:
        self._run("delete from services where id = :id", {"id": service_id})

    # stats

    def ledger_totals(self) -> dict[str, Any]:
        ops = self._run(
            """
            select
              coalesce(sum(case when type = 'in' then amount else 0 end), 0) as total_in,
              coalesce(sum(case when type = 'out' then amount else 0 end), 0) as total_out
            from operations
            """
        )[0]
        transfers = self._run("select coalesce(sum(amount), 0) as total_transfers from transfers")[0]
        return {**ops, **transfers}

    def category_totals(self) -> list[dict[str, Any]]:
        return self._run(
            """
            select category, sum(amount) as total
            from operations
            where type = 'out'
            group by category
            order by total desc
            """
        )

    def person_totals(self) -> list[dict[str, Any]]:
        return self._run(
            """
            select person_name, sum(amount) as total
            from transfers
            group by person_name
            order by total desc
            """
        )

    def property_totals(self) -> list[dict[str, Any]]:
        return self._run(
            """
            select property_type, sum(amount) as total
            from operations
            group by property_type
            order by total desc
            """
        )

    def recent_operations(self, limit: int) -> list[dict[str, Any]]:
        return self._run(
            """
            select id, date, amount, type, category as details
            from operations
            order by created_at desc, id desc
            limit :limit
            """,
            {"limit": limit},
        )

    def recent_transfers(self, limit: int) -> list[dict[str, Any]]:
        return self._run(
            """
            select id, date, amount, person_name as details
            from transfers
            order by created_at desc, id desc
            limit :limit
            """,
            {"limit": limit},
        )

    # backup

    def export_backup(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "users": self._run("select id, username, name, email, role, created_at from users order by id"),
        }
        for table in BACKUP_TABLES:
            data[table] = self._run(f"select * from {table} order by id")
        return {
            "app": "smart-wallet",
            "version": 1,
            "exportedAt": datetime.now(timezone.utc).isoformat(),
            "data": data,
        }
