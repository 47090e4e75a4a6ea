import argparse
import asyncio
import datetime
import json
from typing import Optional

from algorithms.checklist import ChecklistReconciler
from algorithms.readiness import ReadinessValidator
from algorithms.set_synthesizer import MissingSetSynthesizer
from backend import SessionSnapshot
from client import SessionClient
from config import SettingsStore
from db import SyncOperationRepository
from log_config import configure_logging
from offline_sync import OfflineSync
from session_models import SessionExercise
from session_normalizer import SessionNormalizer


def load_snapshot(path: str) -> SessionSnapshot:
    """Read a saved ``/api/sessions/active`` payload, optionally with routines."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if "session" not in data:
        data = {"session": data}
    return SessionSnapshot.model_validate(data)


def parse_checks(raw: Optional[str]) -> dict:
    if not raw:
        return {}
    checks = {}
    for index, value in json.loads(raw).items():
        if value is False:
            checks[int(index)] = False
        elif value:
            checks[int(index)] = datetime.datetime.fromisoformat(value)
    return checks


def find_exercise(snapshot: SessionSnapshot, key: str) -> SessionExercise:
    steps = SessionNormalizer.normalize(snapshot.session, snapshot.routines)
    for step in steps:
        if isinstance(step, SessionExercise) and step.key == key:
            return step
    raise ValueError(f"Exercise {key} not found")


def readiness(path: str) -> int:
    snapshot = load_snapshot(path)
    steps = SessionNormalizer.normalize(snapshot.session, snapshot.routines)
    report = ReadinessValidator.validate(steps)
    if report.valid:
        print("Ready")
        return 0
    print(ReadinessValidator.format_message(report.issues))
    return 1


def checklist(path: str, key: str, checks: Optional[str] = None) -> None:
    exercise = find_exercise(load_snapshot(path), key)
    for row in ChecklistReconciler.build_rows(exercise, parse_checks(checks)):
        mark = "x" if row.checked else " "
        lock = " (logged)" if row.locked else ""
        stamp = row.checked_at.isoformat() if row.checked_at else "-"
        print(f"[{mark}] set {row.set_index}{lock} {stamp}")


def payloads(
    path: str,
    key: str,
    finished: str,
    checks: Optional[str] = None,
    include_unchecked: bool = False,
    band_label: Optional[str] = None,
) -> None:
    exercise = find_exercise(load_snapshot(path), key)
    finished_at = datetime.datetime.fromisoformat(finished)
    started_at = MissingSetSynthesizer.resolve_exercise_start(exercise, finished_at)
    result = MissingSetSynthesizer.require_payloads(
        exercise,
        parse_checks(checks),
        started_at,
        finished_at,
        band_label,
        include_unchecked=include_unchecked,
    )
    print(json.dumps([payload.model_dump(mode="json") for payload in result], indent=2))


async def show_queue(db_path: str) -> None:
    repo = SyncOperationRepository(db_path)
    operations = await repo.fetch_pending()
    for op in operations:
        print(f"{op.queued_at} {op.operation_type} {op.operation_id}")
    print(f"{len(operations)} queued operation(s)")


async def sync(yaml_path: str, log_level: Optional[str] = None) -> int:
    settings = SettingsStore(yaml_path).settings()
    configure_logging(log_level or settings.log_level)
    offline = OfflineSync(
        SyncOperationRepository(settings.offline_db_path), settings.sync_batch_limit
    )
    async with SessionClient(
        settings.api_base_url,
        settings.api_token,
        settings.request_timeout_seconds,
        offline,
    ) as client:
        resolved = await client.flush_offline()
    print(f"Synced {resolved} operation(s), {offline.state.queue_size} remaining")
    if offline.state.last_error:
        print(offline.state.last_error)
        return 1
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Guided workout utilities")
    parser.add_argument("--log-level")
    sub = parser.add_subparsers(dest="cmd", required=True)

    ready = sub.add_parser("readiness")
    ready.add_argument("--session", required=True)

    rows = sub.add_parser("checklist")
    rows.add_argument("--session", required=True)
    rows.add_argument("--exercise", required=True)
    rows.add_argument("--checks")

    pay = sub.add_parser("payloads")
    pay.add_argument("--session", required=True)
    pay.add_argument("--exercise", required=True)
    pay.add_argument("--finished", required=True)
    pay.add_argument("--checks")
    pay.add_argument("--include-unchecked", action="store_true")
    pay.add_argument("--band-label", default="Red")

    queue = sub.add_parser("queue")
    queue.add_argument("--db", default="offline_queue.db")

    snc = sub.add_parser("sync")
    snc.add_argument("--yaml", default="settings.yaml")

    args = parser.parse_args()
    configure_logging(args.log_level or "WARNING")

    if args.cmd == "readiness":
        raise SystemExit(readiness(args.session))
    elif args.cmd == "checklist":
        checklist(args.session, args.exercise, args.checks)
    elif args.cmd == "payloads":
        payloads(
            args.session,
            args.exercise,
            args.finished,
            args.checks,
            args.include_unchecked,
            args.band_label,
        )
    elif args.cmd == "queue":
        asyncio.run(show_queue(args.db))
    elif args.cmd == "sync":
        raise SystemExit(asyncio.run(sync(args.yaml, args.log_level)))


if __name__ == "__main__":
    main()
