"""
Import the legacy flat-file data directory into the configured store.

Legacy layout:
    users.json                  [{email, password_hash, user_hash, email_verified?, created_at?}, ...]
    user_<user_hash>.json       {habits: [{id, name, color}], habitData: {id: {date: bool}}}
    pending_registrations.json  {email: {password_hash, created_at, expires_at}}
    verification_codes.json     {email: {code, type, expires, attempts}} or {email: [entry, ...]}

Running it twice is safe: known emails are not recreated and users that
already have habits keep them.

Usage:
    habitdot-migrate --legacy-dir /var/lib/habit-tracker/data
    python -m app.migrate_legacy --legacy-dir ./data --no-backup
"""

import argparse
import asyncio
import json
import logging
import shutil
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from app.core.config import settings
from app.core.encryption import decrypt
from app.core.exceptions import DecryptionError, StoreConflictError
from app.core.logging import setup_logging
from app.schemas.data import HabitData
from app.services.habits import save_habits
from app.services.users import normalize_email
from app.storage import build_store
from app.storage.base import Store
from app.storage.records import (
    CodePurpose,
    PendingRegistrationRecord,
    UserRecord,
    VerificationCodeRecord,
)
from app.utils import clock

logger = logging.getLogger(__name__)

USERS_FILE = "users.json"
PENDING_FILE = "pending_registrations.json"
CODES_FILE = "verification_codes.json"

LEGACY_CODE_TYPES = {
    "registration": CodePurpose.REGISTRATION,
    "reset": CodePurpose.PASSWORD_RESET,
    "password_reset": CodePurpose.PASSWORD_RESET,
}


@dataclass
class MigrationReport:
    users_created: int = 0
    users_existing: int = 0
    habits: int = 0
    users_with_errors: int = 0
    pending_registrations: int = 0
    verification_codes: int = 0
    backup_dir: Path | None = None
    sample_user_id: int | None = None
    sample_habit_name: str | None = None
    round_trip_ok: bool | None = None

    @property
    def succeeded(self) -> bool:
        # Nothing migrated means nothing to prove
        return self.round_trip_ok is not False


def load_json(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    with path.open(encoding="utf-8") as f:
        return json.load(f)


def _timestamp(value: Any, fallback: datetime) -> datetime:
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    return fallback


def backup_legacy_files(legacy_dir: Path, now: datetime) -> Path:
    """Copy every top-level JSON file into backup_YYYYmmdd_HHMMSS/."""
    backup_dir = legacy_dir / f"backup_{now.strftime('%Y%m%d_%H%M%S')}"
    backup_dir.mkdir(parents=True, exist_ok=True)
    for path in sorted(legacy_dir.glob("*.json")):
        shutil.copy2(path, backup_dir / path.name)
        logger.info(f"Backed up {path.name}")
    return backup_dir


def legacy_habit_data(raw: dict[str, Any]) -> HabitData:
    """Coerce one legacy user file into the current habit data shape.

    Raises:
        ValidationError: the file does not describe valid habits
    """
    habits = [
        {"id": str(habit.get("id", "")), "name": habit.get("name", ""), "color": habit.get("color") or ""}
        for habit in raw.get("habits") or []
    ]
    # Legacy files store an empty map as []
    habit_data = raw.get("habitData") or {}
    if not isinstance(habit_data, dict):
        habit_data = {}
    entries = {
        str(habit_id): {day: bool(done) for day, done in (days or {}).items()}
        for habit_id, days in habit_data.items()
        if isinstance(days, dict) or not days
    }
    return HabitData.model_validate({"habits": habits, "habitData": entries})


async def _migrate_user(store: Store, legacy_dir: Path, entry: dict[str, Any], report: MigrationReport) -> None:
    email = normalize_email(entry["email"])
    now = clock.utcnow()

    user: UserRecord | None = await store.get_user_by_email(email)
    if user is None:
        try:
            user = await store.create_user(
                email,
                entry["password_hash"],
                verified=bool(entry.get("email_verified", True)),
                created_at=_timestamp(entry.get("created_at"), now),
            )
            report.users_created += 1
            logger.info(f"Migrated user {email} as id {user.id}")
        except StoreConflictError:
            user = await store.get_user_by_email(email)
            report.users_existing += 1
    else:
        report.users_existing += 1

    if await store.get_habits(user.id):
        logger.info(f"User {user.id} already has habits, skipping habit import")
        return

    user_file = legacy_dir / f"user_{entry.get('user_hash', '')}.json"
    raw = load_json(user_file, None)
    if not raw:
        return

    try:
        data = legacy_habit_data(raw)
    except ValidationError as e:
        logger.error(f"Skipping habits of user {user.id}: {e.error_count()} invalid field(s) in {user_file.name}")
        report.users_with_errors += 1
        return

    if not data.habits:
        return

    report.habits += await save_habits(store, user.id, data)
    if report.sample_user_id is None:
        report.sample_user_id = user.id
        report.sample_habit_name = data.habits[0].name


async def _migrate_pending(store: Store, legacy_dir: Path, report: MigrationReport) -> None:
    now = clock.utcnow()
    pending = load_json(legacy_dir / PENDING_FILE, {})
    for raw_email, entry in pending.items():
        email = normalize_email(raw_email)
        created_at = _timestamp(entry.get("created_at"), now)
        expires_at = _timestamp(
            entry.get("expires_at", entry.get("expires")),
            created_at + timedelta(minutes=settings.PENDING_REGISTRATION_TTL_MINUTES),
        )
        if expires_at < now or await store.get_user_by_email(email) is not None:
            continue
        if await store.get_pending_registration(email) is not None:
            continue

        await store.put_pending_registration(
            PendingRegistrationRecord(
                email=email,
                password_hash=entry["password_hash"],
                created_at=created_at,
                expires_at=expires_at,
            )
        )
        report.pending_registrations += 1


async def _migrate_codes(store: Store, legacy_dir: Path, report: MigrationReport) -> None:
    now = clock.utcnow()
    codes = load_json(legacy_dir / CODES_FILE, {})
    for raw_email, entries in codes.items():
        email = normalize_email(raw_email)
        if isinstance(entries, dict):
            entries = [entries]

        for entry in entries:
            purpose = LEGACY_CODE_TYPES.get(entry.get("type", "registration"))
            expires_at = _timestamp(entry.get("expires_at", entry.get("expires")), now)
            if purpose is None or expires_at <= now:
                continue
            if await store.get_verification_code(email, purpose) is not None:
                continue

            ttl = timedelta(minutes=settings.VERIFICATION_CODE_TTL_MINUTES)
            await store.put_verification_code(
                VerificationCodeRecord(
                    email=email,
                    purpose=purpose,
                    code=str(entry["code"]),
                    created_at=_timestamp(entry.get("created_at"), expires_at - ttl),
                    expires_at=expires_at,
                    attempts=int(entry.get("attempts", 0)),
                )
            )
            report.verification_codes += 1


async def check_round_trip(store: Store, user_id: int, expected_name: str) -> bool:
    """Decrypt the first migrated habit name and compare it with the legacy plaintext."""
    habits = await store.get_habits(user_id)
    if not habits:
        return False
    try:
        name = decrypt(habits[0].name_encrypted, user_id)
    except DecryptionError:
        return False
    return name == expected_name


async def migrate(store: Store, legacy_dir: Path, backup: bool = True) -> MigrationReport:
    report = MigrationReport()

    users_path = legacy_dir / USERS_FILE
    if not users_path.exists():
        raise FileNotFoundError(f"{users_path} not found, nothing to migrate")

    if backup:
        report.backup_dir = backup_legacy_files(legacy_dir, datetime.now())

    for entry in load_json(users_path, []):
        await _migrate_user(store, legacy_dir, entry, report)

    await _migrate_pending(store, legacy_dir, report)
    await _migrate_codes(store, legacy_dir, report)

    if report.sample_user_id is not None:
        report.round_trip_ok = await check_round_trip(
            store, report.sample_user_id, report.sample_habit_name
        )

    return report


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="habitdot-migrate",
        description="Import legacy flat-file habit tracker data into the configured store.",
    )
    parser.add_argument("--legacy-dir", required=True, type=Path, help="Directory holding users.json")
    parser.add_argument(
        "--backup",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Copy the legacy JSON files to backup_YYYYmmdd_HHMMSS/ first (default: on)",
    )
    return parser


async def _run(legacy_dir: Path, backup: bool) -> MigrationReport:
    store = build_store(settings)
    await store.init()
    try:
        return await migrate(store, legacy_dir, backup=backup)
    finally:
        await store.close()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging()

    try:
        report = asyncio.run(_run(args.legacy_dir, args.backup))
    except FileNotFoundError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    if report.backup_dir:
        print(f"Backup created at: {report.backup_dir}")
    print(f"Users created: {report.users_created} (already present: {report.users_existing})")
    print(f"Habits migrated: {report.habits}")
    print(f"Pending registrations: {report.pending_registrations}")
    print(f"Verification codes: {report.verification_codes}")
    if report.users_with_errors:
        print(f"Users with unreadable habit files: {report.users_with_errors}")

    if not report.succeeded:
        print("ERROR: could not decrypt a migrated habit name. Check HABIT_ENCRYPTION_KEY.", file=sys.stderr)
        return 1

    print("Migration completed successfully")
    return 0


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
