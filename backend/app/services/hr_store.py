"""Tenant-scoped record store for employees, interactions, kudos and contributions.

`TenantStore` is the contract the analytics engine depends on. Every call
takes the tenant id as a mandatory equality filter; filter and ordering
columns are checked against a per-kind whitelist before they reach SQL.
`SQLiteTenantStore` is the bundled implementation.
"""
from __future__ import annotations

import sqlite3
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from threading import Lock, RLock
from typing import Any, Dict, Iterator, List, Mapping, Optional, Protocol, Tuple

from app.core.config import get_settings
from app.core.errors import OperationCancelled, StoreError, ValidationError
from app.core.logging import logger
from app.models.records import SCORE_FIELDS, EntityKind


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def normalize_timestamp(value: Any, column: str = "timestamp") -> str:
    """ISO-8601 in UTC with microsecond precision, so text order is time order.

    Naive values are taken as UTC; unparseable values raise `ValidationError`.
    """
    text = str(value).strip()
    if text.endswith(("Z", "z")):
        text = f"{text[:-1]}+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise ValidationError(f"Invalid ISO-8601 timestamp for {column}: '{value}'", field=column) from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).isoformat(timespec="microseconds")


@dataclass(frozen=True)
class _TableSpec:
    id_column: str
    columns: Tuple[str, ...]
    generated_id: bool = True
    timestamp_column: Optional[str] = None


_TABLES: Dict[EntityKind, _TableSpec] = {
    EntityKind.EMPLOYEES: _TableSpec(
        id_column="employee_id",
        columns=("employee_id", "name", "email", "department", "team", "role", "hire_date", "created_at"),
        generated_id=False,
    ),
    EntityKind.INTERACTIONS: _TableSpec(
        id_column="interaction_id",
        columns=(
            "interaction_id",
            "from_employee_id",
            "to_employee_id",
            "interaction_type",
            "content",
            "timestamp",
            "created_at",
        ),
        timestamp_column="timestamp",
    ),
    EntityKind.KUDOS: _TableSpec(
        id_column="kudos_id",
        columns=("kudos_id", "from_employee_id", "to_employee_id", "message", "timestamp", "created_at"),
        timestamp_column="timestamp",
    ),
    EntityKind.CONTRIBUTIONS: _TableSpec(
        id_column="contribution_id",
        columns=("contribution_id", "employee_id") + SCORE_FIELDS + ("calculated_at", "created_at"),
        timestamp_column="calculated_at",
    ),
}


def table_columns(kind: EntityKind) -> Tuple[str, ...]:
    return _TABLES[kind].columns


@dataclass
class QueryResult:
    records: List[Dict[str, Any]]
    total_count: int


class TenantStore(Protocol):
    """Query/insert contract over the four tenant record kinds."""

    def query(
        self,
        tenant_id: str,
        kind: EntityKind,
        filters: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        offset: int = 0,
        limit: int = 100,
    ) -> QueryResult:
        ...

    def insert(self, tenant_id: str, kind: EntityKind, record: Mapping[str, Any]) -> Dict[str, Any]:
        ...


def raise_if_cancelled(cancel: Optional[threading.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise OperationCancelled("Operation cancelled by caller")


@dataclass
class BoundedFetch:
    """Lazy, finite iteration over a tenant's records.

    Pages of `page_size` are requested until a short page signals exhaustion
    or `max_records` records have been yielded (`None` pages until the data
    runs out). After iteration `fetched` holds the number of records produced
    and `truncated` tells whether the cap cut the sequence short.
    """

    store: TenantStore
    tenant_id: str
    kind: EntityKind
    page_size: int
    max_records: Optional[int]
    filters: Optional[Mapping[str, Any]] = None
    order_by: Optional[str] = None
    descending: bool = False
    cancel: Optional[threading.Event] = None
    fetched: int = field(default=0, init=False)
    truncated: bool = field(default=False, init=False)

    def __post_init__(self) -> None:
        if self.page_size < 1 or (self.max_records is not None and self.max_records < 0):
            raise ValueError("page_size must be positive and max_records non-negative")

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        self.fetched = 0
        self.truncated = False
        offset = 0
        while self.max_records is None or self.fetched < self.max_records:
            raise_if_cancelled(self.cancel)
            limit = self.page_size
            if self.max_records is not None:
                limit = min(limit, self.max_records - self.fetched)
            result = self.store.query(
                self.tenant_id,
                self.kind,
                filters=self.filters,
                order_by=self.order_by,
                descending=self.descending,
                offset=offset,
                limit=limit,
            )
            for record in result.records:
                self.fetched += 1
                yield record
            if len(result.records) < limit:
                return
            offset += len(result.records)
            if self.max_records is not None and self.fetched >= self.max_records:
                self.truncated = result.total_count > self.fetched
                return

    def collect(self) -> List[Dict[str, Any]]:
        return list(self)


def count_records(store: TenantStore, tenant_id: str, kind: EntityKind, cap: int) -> int:
    """Tenant-wide record count, bounded by `cap`."""
    result = store.query(tenant_id, kind, offset=0, limit=1)
    return min(int(result.total_count), cap)


class SQLiteTenantStore:
    """SQLite-backed implementation of `TenantStore`."""

    _lock_registry: dict[str, RLock] = {}
    _lock_registry_guard = Lock()

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = self._get_shared_lock(str(self._db_path.resolve()))
        self._conn = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            timeout=30.0,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode = WAL")
        self._conn.execute("PRAGMA synchronous = NORMAL")
        self._conn.execute("PRAGMA busy_timeout = 30000")
        self._initialize_schema()

    @classmethod
    def _get_shared_lock(cls, key: str) -> RLock:
        with cls._lock_registry_guard:
            lock = cls._lock_registry.get(key)
            if lock is None:
                lock = RLock()
                cls._lock_registry[key] = lock
            return lock

    def _initialize_schema(self) -> None:
        with self._lock:
            self._conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS employees (
                    tenant_id TEXT NOT NULL,
                    employee_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    email TEXT,
                    department TEXT,
                    team TEXT,
                    role TEXT,
                    hire_date TEXT,
                    created_at TEXT NOT NULL,
                    PRIMARY KEY (tenant_id, employee_id)
                );

                CREATE INDEX IF NOT EXISTS idx_employees_tenant_team ON employees (tenant_id, team);
                CREATE INDEX IF NOT EXISTS idx_employees_tenant_dept ON employees (tenant_id, department);

                CREATE TABLE IF NOT EXISTS interactions (
                    tenant_id TEXT NOT NULL,
                    interaction_id TEXT NOT NULL,
                    from_employee_id TEXT NOT NULL,
                    to_employee_id TEXT NOT NULL,
                    interaction_type TEXT NOT NULL,
                    content TEXT,
                    timestamp TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    PRIMARY KEY (tenant_id, interaction_id)
                );

                CREATE INDEX IF NOT EXISTS idx_interactions_tenant_to ON interactions (tenant_id, to_employee_id);

                CREATE TABLE IF NOT EXISTS kudos (
                    tenant_id TEXT NOT NULL,
                    kudos_id TEXT NOT NULL,
                    from_employee_id TEXT NOT NULL,
                    to_employee_id TEXT NOT NULL,
                    message TEXT NOT NULL,
                    timestamp TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    PRIMARY KEY (tenant_id, kudos_id)
                );

                CREATE INDEX IF NOT EXISTS idx_kudos_tenant_to ON kudos (tenant_id, to_employee_id);

                CREATE TABLE IF NOT EXISTS contributions (
                    tenant_id TEXT NOT NULL,
                    contribution_id TEXT NOT NULL,
                    employee_id TEXT NOT NULL,
                    problem_solving_score TEXT,
                    collaboration_score TEXT,
                    initiative_score TEXT,
                    overall_score TEXT,
                    calculated_at TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    PRIMARY KEY (tenant_id, contribution_id)
                );

                CREATE INDEX IF NOT EXISTS idx_contributions_tenant_emp_ts
                    ON contributions (tenant_id, employee_id, calculated_at DESC);
                """
            )
            self._conn.commit()

    @staticmethod
    def _checked_tenant(tenant_id: str) -> str:
        if not tenant_id or not str(tenant_id).strip():
            raise ValidationError("tenant_id is required", field="tenant_id")
        return str(tenant_id)

    @staticmethod
    def _checked_column(spec: _TableSpec, column: str, purpose: str) -> str:
        if column not in spec.columns:
            raise ValidationError(f"Unsupported {purpose} column '{column}'", field=column)
        return column

    def query(
        self,
        tenant_id: str,
        kind: EntityKind,
        filters: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        offset: int = 0,
        limit: int = 100,
    ) -> QueryResult:
        tenant_id = self._checked_tenant(tenant_id)
        spec = _TABLES[EntityKind(kind)]
        table = EntityKind(kind).value

        clauses = ["tenant_id = ?"]
        params: List[Any] = [tenant_id]
        for column, value in (filters or {}).items():
            clauses.append(f"{self._checked_column(spec, column, 'filter')} = ?")
            params.append(value)
        where = " AND ".join(clauses)

        # rowid keeps insertion order stable for equal sort keys
        ordering = "rowid ASC"
        if order_by:
            direction = "DESC" if descending else "ASC"
            ordering = f"{self._checked_column(spec, order_by, 'order')} {direction}, rowid ASC"

        columns = ", ".join(("tenant_id",) + spec.columns)
        try:
            with self._lock:
                total = self._conn.execute(
                    f"SELECT COUNT(*) AS c FROM {table} WHERE {where}",
                    params,
                ).fetchone()
                rows = self._conn.execute(
                    f"SELECT {columns} FROM {table} WHERE {where} ORDER BY {ordering} LIMIT ? OFFSET ?",
                    params + [max(0, int(limit)), max(0, int(offset))],
                ).fetchall()
        except sqlite3.Error as exc:
            logger.error("Tenant store query failed", tenant_id=tenant_id, kind=table, error=str(exc))
            raise StoreError(str(exc)) from exc
        return QueryResult(records=[dict(row) for row in rows], total_count=int(total["c"]))

    def insert(self, tenant_id: str, kind: EntityKind, record: Mapping[str, Any]) -> Dict[str, Any]:
        tenant_id = self._checked_tenant(tenant_id)
        kind = EntityKind(kind)
        spec = _TABLES[kind]

        row: Dict[str, Any] = {column: record.get(column) for column in spec.columns}
        now = _utc_now_iso()
        row["created_at"] = now
        if spec.generated_id and not row.get(spec.id_column):
            row[spec.id_column] = uuid.uuid4().hex
        if spec.timestamp_column:
            stamp = row.get(spec.timestamp_column)
            row[spec.timestamp_column] = normalize_timestamp(stamp, spec.timestamp_column) if stamp else now
        if kind == EntityKind.CONTRIBUTIONS:
            # scores are stored as text and decoded on read
            for score_field in SCORE_FIELDS:
                value = row.get(score_field)
                row[score_field] = None if value is None else str(value)
        if not row.get(spec.id_column):
            raise ValidationError(f"{spec.id_column} is required", field=spec.id_column)

        columns = ("tenant_id",) + spec.columns
        placeholders = ", ".join("?" for _ in columns)
        try:
            with self._lock:
                self._conn.execute(
                    f"INSERT INTO {kind.value} ({', '.join(columns)}) VALUES ({placeholders})",
                    [tenant_id] + [row[column] for column in spec.columns],
                )
                self._conn.commit()
        except sqlite3.IntegrityError as exc:
            raise ValidationError(
                f"{spec.id_column} '{row[spec.id_column]}' already exists",
                field=spec.id_column,
            ) from exc
        except sqlite3.Error as exc:
            logger.error("Tenant store insert failed", tenant_id=tenant_id, kind=kind.value, error=str(exc))
            raise StoreError(str(exc)) from exc

        row["tenant_id"] = tenant_id
        return row

    def list_tenants(self) -> List[str]:
        statement = " UNION ".join(f"SELECT DISTINCT tenant_id FROM {kind.value}" for kind in EntityKind)
        try:
            with self._lock:
                rows = self._conn.execute(f"{statement} ORDER BY tenant_id").fetchall()
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc
        return [row["tenant_id"] for row in rows]

    def close(self) -> None:
        with self._lock:
            self._conn.close()


@lru_cache()
def get_tenant_store() -> SQLiteTenantStore:
    """Process-wide store opened lazily from settings."""
    return SQLiteTenantStore(get_settings().hr_db_path)
