#!/usr/bin/env python3
"""Migrate every legacy-provider game to the current provider."""

from __future__ import annotations

import argparse
import sys
import time
from pathlib import Path
from typing import Any, Callable, Sequence

import pandas as pd
from sqlalchemy import select

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from config import (  # noqa: E402
    DB_CONNECT_TIMEOUT_SECONDS,
    DB_DSN,
    MIGRATION_BATCH_DELAY_SECONDS,
)
from db import schema as db_schema  # noqa: E402
from db import utils as db_utils  # noqa: E402
from reconcile.models import GameRecord  # noqa: E402
from reconcile.service import MigrationService  # noqa: E402

REPORT_COLUMNS = ["legacy_id", "title", "stage", "target_id", "external_id", "error"]


def list_legacy_games(engine: db_utils.DatabaseEngine) -> list[GameRecord]:
    with engine.sa_connection() as conn:
        rows = conn.execute(
            select(db_schema.games)
            .where(db_schema.games.c.provider != db_schema.PROVIDER_CURRENT)
            .order_by(db_schema.games.c.id)
        ).mappings()
        return [GameRecord.from_row(row) for row in rows]


def migrate_legacy_games(
    service: MigrationService,
    *,
    delay: float = MIGRATION_BATCH_DELAY_SECONDS,
    limit: int | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> dict[str, Any]:
    """Migrate legacy games one at a time and return a summary."""

    legacy_games = list_legacy_games(service.engine)
    if limit is not None:
        legacy_games = legacy_games[:limit]

    rows: list[dict[str, Any]] = []
    migrated = 0
    for index, record in enumerate(legacy_games):
        if index and delay > 0:
            sleep(delay)
        with db_utils.db_lock:
            canonical = service.migrate_to_igdb(record)
        attempt = service.attempt(record.id) or {}
        if canonical is not None:
            migrated += 1
        rows.append(
            {
                "legacy_id": record.id,
                "title": record.title,
                "stage": attempt.get("stage"),
                "target_id": canonical.id if canonical is not None else None,
                "external_id": attempt.get("external_id"),
                "error": attempt.get("error"),
            }
        )

    return {
        "total": len(legacy_games),
        "migrated": migrated,
        "failed": len(legacy_games) - migrated,
        "rows": rows,
    }


def write_report(rows: Sequence[dict[str, Any]], path: Path) -> None:
    frame = pd.DataFrame(list(rows), columns=REPORT_COLUMNS)
    path.parent.mkdir(parents=True, exist_ok=True)
    frame.to_csv(path, index=False)


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--dsn", default=DB_DSN, help="database URL (defaults to DATABASE_URL)")
    parser.add_argument(
        "--delay",
        type=float,
        default=MIGRATION_BATCH_DELAY_SECONDS,
        help="seconds to wait between games",
    )
    parser.add_argument("--limit", type=int, default=None, help="migrate at most N games")
    parser.add_argument("--report", type=Path, default=None, help="write a CSV report to PATH")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    from web.app_factory import build_migration_service

    args = _parse_args(argv)
    try:
        engine = db_utils.build_engine_from_dsn(
            args.dsn,
            timeout=DB_CONNECT_TIMEOUT_SECONDS,
            pool_size=1,
            pool_recycle=1_800,
            pool_pre_ping=True,
        )
        db_schema.create_schema(engine)
        service = build_migration_service(engine)
        summary = migrate_legacy_games(service, delay=args.delay, limit=args.limit)
    except Exception as exc:  # pragma: no cover - surface unexpected failures
        print(f"Failed to migrate legacy games: {exc}")
        raise SystemExit(1)

    for row in summary["rows"]:
        target = row["target_id"] if row["target_id"] is not None else "-"
        print(f"  {row['legacy_id']} {row['title']!r}: {row['stage']} -> {target}")

    if args.report is not None:
        write_report(summary["rows"], args.report)
        print(f"Wrote report to {args.report}")

    print(
        "Processed {total} legacy games (migrated: {migrated}, not migrated: {failed}).".format(
            total=summary["total"],
            migrated=summary["migrated"],
            failed=summary["failed"],
        )
    )


if __name__ == "__main__":  # pragma: no cover - manual execution path
    main()
