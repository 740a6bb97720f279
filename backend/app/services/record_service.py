"""Create and page through tenant records.

Inserts go to the tenant store first; the row is then appended to the
tenant's CSV mirror under the file lock.
"""
from __future__ import annotations

import math
from functools import lru_cache
from typing import Any, Dict, Mapping, Optional

from app.core.config import Settings, get_settings
from app.core.errors import NotFoundError
from app.core.logging import logger
from app.models.records import (
    ContributionCreateRequest,
    EmployeeRecord,
    EntityKind,
    RecordPage,
)
from app.services.hr_store import BoundedFetch, TenantStore, get_tenant_store, table_columns
from app.services.scoring import score_employee
from app.services.tabular_writer import ColumnSpec, LockedTabularWriter, get_tabular_writer


class RecordService:
    def __init__(self, store: TenantStore, writer: LockedTabularWriter, settings: Settings) -> None:
        self._store = store
        self._writer = writer
        self._settings = settings

    def _mirror(self, tenant_id: str, kind: EntityKind, row: Mapping[str, Any]) -> None:
        path = self._settings.tenant_dir(tenant_id) / f"{kind.value}.csv"
        self._writer.append_one(path, ColumnSpec.of(*table_columns(kind)), row)

    def create(self, tenant_id: str, kind: EntityKind, payload: Mapping[str, Any]) -> Dict[str, Any]:
        row = self._store.insert(tenant_id, kind, payload)
        self._mirror(tenant_id, kind, row)
        logger.info("Record created", tenant_id=tenant_id, kind=kind.value)
        return row

    def page(
        self,
        tenant_id: str,
        kind: EntityKind,
        page: int,
        limit: int,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> RecordPage:
        result = self._store.query(
            tenant_id,
            kind,
            filters=filters,
            offset=(page - 1) * limit,
            limit=limit,
        )
        return RecordPage(
            items=result.records,
            page=page,
            limit=limit,
            total_count=result.total_count,
            total_pages=math.ceil(result.total_count / limit),
        )

    def employee(self, tenant_id: str, employee_id: str) -> Dict[str, Any]:
        result = self._store.query(tenant_id, EntityKind.EMPLOYEES, filters={"employee_id": employee_id}, limit=1)
        if not result.records:
            raise NotFoundError("employee", employee_id, tenant_id)
        return result.records[0]

    def _related(self, tenant_id: str, kind: EntityKind, filters: Mapping[str, Any]):
        return BoundedFetch(
            self._store,
            tenant_id,
            kind,
            page_size=self._settings.analytics_contribution_page_size,
            max_records=self._settings.analytics_max_records,
            filters=filters,
        ).collect()

    def create_contribution(self, tenant_id: str, request: ContributionCreateRequest) -> Dict[str, Any]:
        """Store a contribution, computing any scores the request leaves out."""
        self.employee(tenant_id, request.employee_id)
        provided = request.provided_scores()

        if len(provided) < 4:
            logger.debug("Calculating contribution scores", employee_id=request.employee_id, tenant_id=tenant_id)
            interactions = self._related(
                tenant_id, EntityKind.INTERACTIONS, {"from_employee_id": request.employee_id}
            )
            kudos = self._related(tenant_id, EntityKind.KUDOS, {"to_employee_id": request.employee_id})
            employees = [
                EmployeeRecord.from_store(row)
                for row in self._related(tenant_id, EntityKind.EMPLOYEES, {})
            ]
            provided = score_employee(interactions, kudos, employees, provided)

        payload = {"employee_id": request.employee_id, "calculated_at": request.calculated_at, **provided}
        return self.create(tenant_id, EntityKind.CONTRIBUTIONS, payload)


@lru_cache()
def get_record_service() -> RecordService:
    return RecordService(get_tenant_store(), get_tabular_writer(), get_settings())
