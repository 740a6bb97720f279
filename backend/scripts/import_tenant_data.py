#!/usr/bin/env python3
"""Bulk import tenant CSV datasets into the HR analytics store."""

from __future__ import annotations

import argparse
import csv
from pathlib import Path
import sys
from typing import Iterable, Tuple

# Ensure `app` package is importable when script is run directly.
CURRENT_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = CURRENT_DIR.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from app.core.errors import HRAnalyticsError
from app.models.records import EntityKind
from app.services.backup_service import get_backup_service
from app.services.hr_store import get_tenant_store


def iter_rows(path: Path) -> Iterable[dict]:
    with path.open("r", encoding="utf-8", newline="") as handle:
        for row in csv.DictReader(handle):
            yield {key: (value if value != "" else None) for key, value in row.items()}


def import_kind(tenant_id: str, kind: EntityKind, path: Path) -> Tuple[int, int]:
    store = get_tenant_store()
    imported = failed = 0
    for row in iter_rows(path):
        try:
            store.insert(tenant_id, kind, row)
            imported += 1
        except HRAnalyticsError as exc:
            failed += 1
            print(f"[SKIP] {path.name}: {exc}")
    return imported, failed


def run(root: Path, tenant_id: str, export: bool) -> None:
    total_imported = 0
    total_failed = 0

    for kind in EntityKind:
        path = root / f"{kind.value}.csv"
        if not path.exists():
            print(f"[MISS] {path.name}")
            continue
        imported, failed = import_kind(tenant_id, kind, path)
        total_imported += imported
        total_failed += failed
        print(f"[OK] {path.name} imported={imported} failed={failed}")

    if export:
        written = get_backup_service().export_tenant_dataset(tenant_id)
        print(f"Exported {len(written)} CSV files for tenant={tenant_id}")

    print(f"\nImport complete: {total_imported} records, {total_failed} failed | tenant={tenant_id}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Bulk import tenant HR datasets")
    parser.add_argument(
        "folder",
        type=Path,
        help="Folder containing employees.csv, interactions.csv, kudos.csv, contributions.csv",
    )
    parser.add_argument(
        "--tenant-id",
        type=str,
        default=None,
        help="Tenant ID for imported records (defaults to the folder name)",
    )
    parser.add_argument(
        "--export",
        action="store_true",
        help="Rewrite the tenant's CSV mirror from the store after import",
    )
    args = parser.parse_args()

    root = args.folder.expanduser().resolve()
    if not root.exists() or not root.is_dir():
        raise SystemExit(f"Folder not found: {root}")

    run(
        root=root,
        tenant_id=(args.tenant_id or root.name).strip(),
        export=args.export,
    )


if __name__ == "__main__":
    main()
