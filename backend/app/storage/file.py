"""
Flat-file JSON store.

Each collection lives in its own JSON file under the data directory; habits
get one file per user (``habits/user_<id>.json``). Files are rewritten whole
through a temp file + ``os.replace`` so a crash never leaves half a file.
Mutations are serialized by the MemoryStore lock, which is sufficient for the
single-instance deployment this backend targets.
"""

import asyncio
import json
import logging
import os
import tempfile
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any

from app.core.exceptions import StorageError
from app.storage.memory import ATTEMPTS, CODES, HABITS, PENDING, SESSIONS, USERS, MemoryStore
from app.storage.records import (
    CodePurpose,
    LoginAttemptRecord,
    PendingRegistrationRecord,
    SessionRecord,
    StoredHabit,
    UserRecord,
    VerificationCodeRecord,
)
from app.utils.clock import ensure_aware

logger = logging.getLogger(__name__)


def _encode(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, CodePurpose):
        return value.value
    return value


def _to_json(record: Any) -> dict[str, Any]:
    return {key: _encode(value) for key, value in asdict(record).items()}


def _parse_dt(value: str | None) -> datetime | None:
    if value is None:
        return None
    return ensure_aware(datetime.fromisoformat(value))


def _write_json_atomic(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=2)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


class FileStore(MemoryStore):
    def __init__(self, data_dir: str | Path) -> None:
        super().__init__()
        self.data_dir = Path(data_dir)

    def _path(self, collection: str) -> Path:
        return self.data_dir / f"{collection}.json"

    def _habits_path(self, user_id: int) -> Path:
        return self.data_dir / HABITS / f"user_{user_id}.json"

    def _read(self, path: Path) -> Any:
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Cannot read {path.name}: {e}") from e

    async def init(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(self._load)
        logger.info(f"File store loaded from {self.data_dir}: {len(self._users)} user(s)")

    def _load(self) -> None:
        users = self._read(self._path(USERS)) or {}
        for item in users.get("users", []):
            user = UserRecord(
                id=item["id"],
                email=item["email"],
                password_hash=item["password_hash"],
                verified=item.get("verified", True),
                created_at=_parse_dt(item["created_at"]),
            )
            self._users[user.id] = user
        self._next_user_id = users.get("next_id", max(self._users, default=0) + 1)

        for email, item in (self._read(self._path(PENDING)) or {}).items():
            self._pending[email] = PendingRegistrationRecord(
                email=email,
                password_hash=item["password_hash"],
                created_at=_parse_dt(item["created_at"]),
                expires_at=_parse_dt(item["expires_at"]),
            )

        for item in self._read(self._path(CODES)) or []:
            record = VerificationCodeRecord(
                email=item["email"],
                purpose=CodePurpose(item["purpose"]),
                code=item["code"],
                created_at=_parse_dt(item["created_at"]),
                expires_at=_parse_dt(item["expires_at"]),
                used=item.get("used", False),
                attempts=item.get("attempts", 0),
            )
            self._codes[(record.email, record.purpose.value)] = record

        for email, item in (self._read(self._path(ATTEMPTS)) or {}).items():
            self._attempts[email] = LoginAttemptRecord(
                email=email,
                count=item["count"],
                first_attempt_at=_parse_dt(item["first_attempt_at"]),
                last_attempt_at=_parse_dt(item["last_attempt_at"]),
                locked_until=_parse_dt(item.get("locked_until")),
            )

        for session_id, item in (self._read(self._path(SESSIONS)) or {}).items():
            self._sessions[session_id] = SessionRecord(
                id=session_id,
                created_at=_parse_dt(item["created_at"]),
                last_activity=_parse_dt(item["last_activity"]),
                csrf_token=item.get("csrf_token"),
                user_id=item.get("user_id"),
                email=item.get("email"),
            )

        habits_dir = self.data_dir / HABITS
        if habits_dir.is_dir():
            for path in habits_dir.glob("user_*.json"):
                user_id = int(path.stem.removeprefix("user_"))
                payload = self._read(path) or {}
                self._habits[user_id] = [StoredHabit(**item) for item in payload.get("habits", [])]

    def _snapshot(self, collection: str, user_id: int | None) -> tuple[Path, Any]:
        if collection == USERS:
            return self._path(USERS), {
                "next_id": self._next_user_id,
                "users": [_to_json(u) for u in self._users.values()],
            }
        if collection == PENDING:
            return self._path(PENDING), {e: _to_json(r) for e, r in self._pending.items()}
        if collection == CODES:
            return self._path(CODES), [_to_json(r) for r in self._codes.values()]
        if collection == ATTEMPTS:
            return self._path(ATTEMPTS), {e: _to_json(r) for e, r in self._attempts.items()}
        if collection == SESSIONS:
            return self._path(SESSIONS), {i: _to_json(r) for i, r in self._sessions.items()}
        if collection == HABITS and user_id is not None:
            habits = self._habits.get(user_id)
            return self._habits_path(user_id), None if habits is None else {
                "habits": [asdict(h) for h in habits],
            }
        raise ValueError(f"Unknown collection: {collection}")

    @asynccontextmanager
    async def _mutation(self) -> AsyncIterator[None]:
        """Serialize one mutation; if its files cannot be written, undo it in memory."""
        async with super()._mutation():
            saved = self._state()
            try:
                yield
            except Exception:
                self._restore(saved)
                raise

    def _state(self) -> tuple[Any, ...]:
        return (
            dict(self._users),
            self._next_user_id,
            dict(self._pending),
            dict(self._codes),
            dict(self._attempts),
            dict(self._sessions),
            dict(self._habits),
        )

    def _restore(self, state: tuple[Any, ...]) -> None:
        (
            self._users,
            self._next_user_id,
            self._pending,
            self._codes,
            self._attempts,
            self._sessions,
            self._habits,
        ) = state

    async def _changed(self, collection: str, user_id: int | None = None) -> None:
        path, payload = self._snapshot(collection, user_id)
        try:
            if payload is None:
                # User deleted: drop their habit file
                await asyncio.to_thread(path.unlink, missing_ok=True)
            else:
                await asyncio.to_thread(_write_json_atomic, path, payload)
        except OSError as e:
            logger.error(f"Failed to write {path}: {e}")
            raise StorageError(f"Cannot write {path.name}") from e
