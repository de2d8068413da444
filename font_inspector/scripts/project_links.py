#!/usr/bin/env python3
"""Repair or audit project <-> inspection links.

Usage:
  python -m font_inspector.scripts.project_links rebuild
  python -m font_inspector.scripts.project_links rebuild --dry-run
  python -m font_inspector.scripts.project_links audit --json
  python -m font_inspector.scripts.project_links --db data/font_inspector.db audit
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path
from typing import Any

import aiosqlite

from font_inspector.db import connection, migrations
from font_inspector.project_links import ProjectLinkService

logger = logging.getLogger("fontinspector.scripts")


async def _open(db_path: str | None) -> Any:
    if not db_path:
        db = await connection.get_connection()
        await migrations.run_migrations(db)
        return db
    db = await aiosqlite.connect(db_path)
    db.row_factory = aiosqlite.Row
    return db


def _print_rebuild(stats: dict[str, Any]) -> None:
    mode = "dry run" if stats.get("dry_run") else "applied"
    print(f"Link rebuild ({mode})")
    print(f"Inspections scanned: {stats['inspections_scanned']}")
    print(f"Projects updated: {stats['projects_updated']}")
    print(f"Projects missing: {stats['projects_missing']}")
    for project_id in stats.get("missing_project_ids", []):
        print(f"  missing project={project_id}")
    for project_id, ids in (stats.get("groups") or {}).items():
        print(f"  project={project_id} inspections={len(ids)}")
        for inspection_id in ids:
            print(f"    {inspection_id}")
    print(f"Duration: {stats['duration_ms']}ms")


def _print_audit(report: dict[str, Any]) -> None:
    print(f"Projects: {report['project_count']}")
    print(f"Linked inspections: {report['linked_inspection_count']}")
    print(f"Findings: {report['finding_count']}")
    print("")
    for idx, finding in enumerate(report["findings"], start=1):
        print(f"{idx:02d}. {finding['kind']} project={finding['project_id']} inspection={finding['inspection_id']}")
        print(f"    {finding['detail']}")


async def _run(args: argparse.Namespace) -> int:
    if args.db and not Path(args.db).exists():
        print(f"DB not found: {args.db}")
        return 1
    db = await _open(args.db)
    try:
        service = ProjectLinkService(db)
        if args.command == "rebuild":
            stats = await service.rebuild_links_from_inspections(dry_run=args.dry_run)
            if args.json:
                print(json.dumps(stats, indent=2))
            else:
                _print_rebuild(stats)
            return 0

        report = await service.audit_links()
        if args.json:
            print(json.dumps(report, indent=2))
        else:
            _print_audit(report)
        return 0
    finally:
        if args.db:
            await db.close()
        else:
            await connection.close_connection()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--db", default="", help="SQLite file to use instead of the configured database")
    subparsers = parser.add_subparsers(dest="command", required=True)

    rebuild = subparsers.add_parser("rebuild", help="overwrite project inspection sets from inspection back-references")
    rebuild.add_argument("--dry-run", action="store_true")
    rebuild.add_argument("--json", action="store_true")

    audit = subparsers.add_parser("audit", help="report references that disagree")
    audit.add_argument("--json", action="store_true")

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.WARNING)
    try:
        return asyncio.run(_run(args))
    except Exception as exc:
        logger.error("%s failed: %s", args.command, exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
