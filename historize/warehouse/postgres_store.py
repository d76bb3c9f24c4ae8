"""
PostgreSQL table store.

Each entity owns one table in its namespace (schema):
- current-state entities: one row per business key, overwritten on change
- historized entities: one row per version, only valid_to/is_current ever
  updated, with a partial unique index allowing one current version per key

Two shared tables in the namespace hold the watermarks and the rejected
records. Every write of an entity run happens on one connection inside
one transaction.
"""

import json
from contextlib import contextmanager
from datetime import datetime
from typing import Any

import psycopg
from psycopg import sql
from psycopg.types.json import Jsonb

from historize.core.errors import StoreError
from historize.core.models import (
    CurrentRecord,
    EntityConfig,
    RejectedRecord,
    VersionedRecord,
    WatermarkState,
)
from historize.core.timeutil import ensure_utc, utcnow
from historize.observability.logger import get_logger

from .connection import DatabaseConnectionPool
from .store import StoreTransaction, TableStore

logger = get_logger(__name__)

WATERMARK_TABLE = "_watermarks"
REJECTED_TABLE = "_rejected_records"


def _dumps(value: Any) -> str:
    """JSON encoding for payloads holding Decimal, date and datetime values."""
    return json.dumps(value, sort_keys=True, default=str)


def _jsonb(value: dict[str, Any]) -> Jsonb:
    return Jsonb(value, dumps=_dumps)


class PostgresTableStore(TableStore):
    """
    TableStore backed by PostgreSQL through a psycopg3 connection pool.
    """

    def __init__(self, pool: DatabaseConnectionPool):
        """
        Initialize the store.

        Args:
            pool: Open database connection pool
        """
        self.pool = pool

    def ensure_tables(self, entity: EntityConfig) -> None:
        """
        Create the namespace, the entity table and the shared tables.

        Idempotent: every statement uses IF NOT EXISTS.
        """
        namespace = sql.Identifier(entity.namespace)
        table = sql.Identifier(entity.namespace, entity.name)
        statements = [
            sql.SQL("CREATE SCHEMA IF NOT EXISTS {namespace}").format(namespace=namespace),
            sql.SQL("""
                CREATE TABLE IF NOT EXISTS {table} (
                    entity TEXT PRIMARY KEY,
                    watermark TIMESTAMPTZ NOT NULL,
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
                )
            """).format(table=sql.Identifier(entity.namespace, WATERMARK_TABLE)),
            sql.SQL("""
                CREATE TABLE IF NOT EXISTS {table} (
                    rejection_id BIGSERIAL PRIMARY KEY,
                    entity TEXT NOT NULL,
                    business_key TEXT,
                    change_timestamp TIMESTAMPTZ,
                    raw_payload JSONB NOT NULL,
                    kind TEXT NOT NULL,
                    failed_rules TEXT[] NOT NULL,
                    error_messages TEXT[] NOT NULL,
                    rejected_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                    reviewed BOOLEAN NOT NULL DEFAULT FALSE
                )
            """).format(table=sql.Identifier(entity.namespace, REJECTED_TABLE)),
        ]

        if entity.historized:
            statements.extend([
                sql.SQL("""
                    CREATE TABLE IF NOT EXISTS {table} (
                        version_id BIGSERIAL PRIMARY KEY,
                        business_key TEXT NOT NULL,
                        payload JSONB NOT NULL,
                        checksum TEXT NOT NULL,
                        valid_from TIMESTAMPTZ NOT NULL,
                        valid_to TIMESTAMPTZ NOT NULL,
                        is_current BOOLEAN NOT NULL,
                        loaded_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                        UNIQUE (business_key, valid_from),
                        CHECK (valid_to > valid_from)
                    )
                """).format(table=table),
                sql.SQL(
                    "CREATE UNIQUE INDEX IF NOT EXISTS {index} ON {table} (business_key) WHERE is_current"
                ).format(index=sql.Identifier(f"{entity.name}_one_current"), table=table),
            ])
        else:
            statements.append(sql.SQL("""
                CREATE TABLE IF NOT EXISTS {table} (
                    business_key TEXT PRIMARY KEY,
                    payload JSONB NOT NULL,
                    checksum TEXT NOT NULL,
                    change_timestamp TIMESTAMPTZ NOT NULL,
                    loaded_at TIMESTAMPTZ NOT NULL DEFAULT now()
                )
            """).format(table=table))

        try:
            with self.pool.get_connection() as conn:
                with conn.transaction():
                    for statement in statements:
                        conn.execute(statement)
        except psycopg.Error as e:
            raise StoreError(f"{entity.name}: failed to provision tables: {e}") from e

        logger.info(
            f"Tables ready for {entity.namespace}.{entity.name}",
            extra={"entity": entity.name, "namespace": entity.namespace, "kind": entity.kind},
        )

    def load_watermark(self, entity: EntityConfig) -> datetime | None:
        try:
            rows = self.pool.execute_query(
                sql.SQL("SELECT watermark FROM {table} WHERE entity = %s").format(
                    table=sql.Identifier(entity.namespace, WATERMARK_TABLE)
                ),
                (entity.name,),
            )
        except psycopg.Error as e:
            raise StoreError(f"{entity.name}: watermark query failed: {e}") from e
        return ensure_utc(rows[0]["watermark"]) if rows else None

    def load_watermark_state(self, entity: EntityConfig) -> WatermarkState | None:
        try:
            rows = self.pool.execute_query(
                sql.SQL("SELECT entity, watermark, updated_at FROM {table} WHERE entity = %s").format(
                    table=sql.Identifier(entity.namespace, WATERMARK_TABLE)
                ),
                (entity.name,),
            )
        except psycopg.Error as e:
            raise StoreError(f"{entity.name}: watermark query failed: {e}") from e
        return WatermarkState(**rows[0]) if rows else None

    def load_rejections(self, entity: EntityConfig) -> list[RejectedRecord]:
        try:
            rows = self.pool.execute_query(
                sql.SQL("""
                    SELECT rejection_id, entity, business_key, change_timestamp, raw_payload,
                           kind, failed_rules, error_messages, rejected_at, reviewed
                    FROM {table}
                    WHERE entity = %s
                    ORDER BY rejection_id
                """).format(table=sql.Identifier(entity.namespace, REJECTED_TABLE)),
                (entity.name,),
            )
        except psycopg.Error as e:
            raise StoreError(f"{entity.name}: rejected-record query failed: {e}") from e
        return [RejectedRecord(**row) for row in rows]

    @contextmanager
    def transaction(self, entity: EntityConfig):
        try:
            with self.pool.get_connection() as conn:
                with conn.transaction():
                    tx = _PostgresTransaction(entity, conn)
                    yield tx
                    if tx.rollback_only:
                        raise psycopg.Rollback()
        except psycopg.Error as e:
            raise StoreError(f"{entity.name}: transaction failed: {e}") from e

    def close(self) -> None:
        self.pool.close()


class _PostgresTransaction(StoreTransaction):
    """Reads and writes of one entity run on a single connection."""

    def __init__(self, entity: EntityConfig, conn: psycopg.Connection):
        super().__init__(entity)
        self.conn = conn
        self.table = sql.Identifier(entity.namespace, entity.name)

    def load_watermark(self) -> datetime | None:
        row = self.conn.execute(
            sql.SQL("SELECT watermark FROM {table} WHERE entity = %s FOR UPDATE").format(
                table=sql.Identifier(self.entity.namespace, WATERMARK_TABLE)
            ),
            (self.entity.name,),
        ).fetchone()
        return ensure_utc(row["watermark"]) if row else None

    def load_current(self, keys: list[str]) -> dict[str, CurrentRecord]:
        if not keys:
            return {}
        rows = self.conn.execute(
            sql.SQL("""
                SELECT business_key, payload, checksum, change_timestamp, loaded_at
                FROM {table}
                WHERE business_key = ANY(%s)
                FOR UPDATE
            """).format(table=self.table),
            (keys,),
        ).fetchall()
        return {row["business_key"]: CurrentRecord(**row) for row in rows}

    def load_versions(self, keys: list[str]) -> dict[str, list[VersionedRecord]]:
        if not keys:
            return {}
        rows = self.conn.execute(
            sql.SQL("""
                SELECT version_id, business_key, payload, checksum, valid_from, valid_to, is_current
                FROM {table}
                WHERE business_key = ANY(%s)
                ORDER BY business_key, valid_from
                FOR UPDATE
            """).format(table=self.table),
            (keys,),
        ).fetchall()
        versions: dict[str, list[VersionedRecord]] = {}
        for row in rows:
            versions.setdefault(row["business_key"], []).append(VersionedRecord(**row))
        return versions

    def upsert_current(self, rows: list[CurrentRecord]) -> int:
        if not rows:
            return 0
        with self.conn.cursor() as cur:
            cur.executemany(
                sql.SQL("""
                    INSERT INTO {table} (business_key, payload, checksum, change_timestamp, loaded_at)
                    VALUES (%s, %s, %s, %s, %s)
                    ON CONFLICT (business_key) DO UPDATE SET
                        payload = EXCLUDED.payload,
                        checksum = EXCLUDED.checksum,
                        change_timestamp = EXCLUDED.change_timestamp,
                        loaded_at = EXCLUDED.loaded_at
                """).format(table=self.table),
                [
                    (row.business_key, _jsonb(row.payload), row.checksum, row.change_timestamp, row.loaded_at)
                    for row in rows
                ],
            )
        return len(rows)

    def close_versions(self, versions: list[VersionedRecord]) -> int:
        updated = 0
        for version in versions:
            cur = self.conn.execute(
                sql.SQL("""
                    UPDATE {table}
                    SET valid_to = %s, is_current = %s
                    WHERE business_key = %s AND valid_from = %s
                """).format(table=self.table),
                (version.valid_to, version.is_current, version.business_key, version.valid_from),
            )
            if cur.rowcount != 1:
                raise StoreError(
                    f"{self.entity.name}: no version of {version.business_key} "
                    f"starting {version.valid_from.isoformat()} to close"
                )
            updated += 1
        return updated

    def insert_versions(self, versions: list[VersionedRecord]) -> int:
        if not versions:
            return 0
        with self.conn.cursor() as cur:
            cur.executemany(
                sql.SQL("""
                    INSERT INTO {table} (business_key, payload, checksum, valid_from, valid_to, is_current)
                    VALUES (%s, %s, %s, %s, %s, %s)
                """).format(table=self.table),
                [
                    (
                        version.business_key,
                        _jsonb(version.payload),
                        version.checksum,
                        version.valid_from,
                        version.valid_to,
                        version.is_current,
                    )
                    for version in versions
                ],
            )
        return len(versions)

    def save_rejections(self, records: list[RejectedRecord]) -> int:
        if not records:
            return 0
        with self.conn.cursor() as cur:
            cur.executemany(
                sql.SQL("""
                    INSERT INTO {table} (
                        entity, business_key, change_timestamp, raw_payload,
                        kind, failed_rules, error_messages, rejected_at, reviewed
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                """).format(table=sql.Identifier(self.entity.namespace, REJECTED_TABLE)),
                [
                    (
                        record.entity,
                        record.business_key,
                        record.change_timestamp,
                        _jsonb(record.raw_payload),
                        record.kind,
                        record.failed_rules,
                        record.error_messages,
                        record.rejected_at,
                        record.reviewed,
                    )
                    for record in records
                ],
            )
        return len(records)

    def save_watermark(self, watermark: datetime) -> None:
        self.conn.execute(
            sql.SQL("""
                INSERT INTO {table} (entity, watermark, updated_at)
                VALUES (%s, %s, %s)
                ON CONFLICT (entity) DO UPDATE SET
                    watermark = GREATEST({table}.watermark, EXCLUDED.watermark),
                    updated_at = EXCLUDED.updated_at
            """).format(table=sql.Identifier(self.entity.namespace, WATERMARK_TABLE)),
            (self.entity.name, watermark, utcnow()),
        )
