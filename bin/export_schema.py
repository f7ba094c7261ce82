#!/usr/bin/env python3
"""Export the testsuite PostgreSQL schema by concatenating migrations."""
from __future__ import annotations

import argparse
import re
import textwrap
from pathlib import Path
from typing import List


def default_migrations_dir() -> Path:
    return Path(__file__).resolve().parent.parent / "migrations"


def default_output_path() -> Path:
    return (
        Path(__file__)
        .resolve()
        .parent.parent
        / "tests"
        / "schemas"
        / "postgresql"
        / "webhook_service.sql"
    )


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Generate test schema SQL from migration files."
    )
    parser.add_argument(
        "--migrations-dir",
        "-m",
        type=Path,
        default=default_migrations_dir(),
        help="Directory with *.sql migrations.",
    )
    parser.add_argument(
        "--output",
        "-o",
        type=Path,
        default=default_output_path(),
        help="Target SQL file (testsuite schema).",
    )
    return parser.parse_args()


CREATE_TABLE_RE = re.compile(
    r"CREATE\s+TABLE\s+(?:IF\s+NOT\s+EXISTS\s+)?([a-zA-Z0-9_\.]+)", re.IGNORECASE
)


def collect_tables(sql: str) -> List[str]:
    tables: List[str] = []
    for match in CREATE_TABLE_RE.finditer(sql):
        name = match.group(1)
        if name not in tables:
            tables.append(name)
    return tables


def build_schema(migrations: List[Path]) -> str:
    tables: List[str] = []
    body_parts: List[str] = []
    for path in migrations:
        sql = path.read_text(encoding="utf-8").strip()
        for name in collect_tables(sql):
            if name not in tables:
                tables.append(name)
        body_parts.append(f"-- Migration: {path.name}\n{sql}\n")

    header = textwrap.dedent(
        """\
        -- Auto-generated from migrations.
        -- Run `python bin/export_schema.py` after editing migrations.
        """
    )
    drop_section = "\n".join(
        f"DROP TABLE IF EXISTS {table} CASCADE;" for table in reversed(tables)
    )
    return "\n".join(
        [
            header,
            "BEGIN;",
            drop_section,
            "",
            "\n".join(body_parts).strip(),
            "COMMIT;",
            "",
        ]
    )


def main() -> None:
    args = parse_args()
    migrations = sorted(args.migrations_dir.glob("*.sql"))
    if not migrations:
        raise SystemExit(f"No migrations found in {args.migrations_dir}")
    args.output.write_text(build_schema(migrations), encoding="utf-8")
    print(f"Wrote schema to {args.output}")


if __name__ == "__main__":
    main()
