#!/usr/bin/env python3
"""Generate config/schema_snapshot.json from the live SQL Server catalog."""

from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
from typing import Any

from planqa.config import get_settings, resolve_project_path
from planqa.connectors import ConnectorError, MSSQLConnector
from planqa.stores.json_file import write_json_atomic


def parse_args() -> argparse.Namespace:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Snapshot curated table columns for column validation.")
    parser.add_argument(
        "--output",
        default=str(settings.data.schema_snapshot_path),
        help="Snapshot file to write.",
    )
    parser.add_argument(
        "--schema",
        default=settings.guardrails.allowed_schema,
        help="Database schema to introspect.",
    )
    parser.add_argument(
        "--prefix",
        default=settings.guardrails.table_prefix,
        help="Only tables whose names start with this prefix.",
    )
    return parser.parse_args()


def build_snapshot(columns: dict[str, list[dict[str, Any]]]) -> dict[str, Any]:
    return {"tables": {name: columns[name] for name in sorted(columns)}}


async def fetch_columns(schema: str, prefix: str) -> dict[str, list[dict[str, Any]]]:
    connector = MSSQLConnector.from_settings(get_settings().database)
    async with connector:
        return await connector.get_columns(schema, prefix)


def main() -> int:
    args = parse_args()
    try:
        columns = asyncio.run(fetch_columns(args.schema, args.prefix))
    except ConnectorError as exc:
        print(f"Snapshot failed: {exc}")
        return 1

    if not columns:
        print(f"No tables found in [{args.schema}] with prefix {args.prefix!r}; snapshot not written.")
        return 1

    output = resolve_project_path(Path(args.output))
    write_json_atomic(output, build_snapshot(columns))
    total_columns = sum(len(cols) for cols in columns.values())
    print(f"Wrote {len(columns)} tables ({total_columns} columns) to {output}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
