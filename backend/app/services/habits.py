"""
Habit data service.

Converts between the client representation (plaintext names, a completion map
per habit) and what the store keeps (encrypted names, completed dates only).
"""

import logging
from typing import Any

from app.core.encryption import decrypt, encrypt
from app.core.exceptions import DecryptionError
from app.schemas.data import HabitData
from app.storage.base import Store
from app.storage.records import StoredHabit

logger = logging.getLogger(__name__)


async def load_habits(store: Store, user_id: int) -> dict[str, Any]:
    """
    Return ``{"habits": [...], "habitData": {...}}`` for a user.

    Habits whose names cannot be decrypted are left out; one bad record never
    hides the rest of the user's data.
    """
    habits: list[dict[str, str]] = []
    habit_data: dict[str, dict[str, bool]] = {}

    for stored in await store.get_habits(user_id):
        try:
            name = decrypt(stored.name_encrypted, user_id)
        except DecryptionError as e:
            logger.warning(f"Skipping habit {stored.id} for user {user_id}: {e.reason}")
            continue

        habits.append({"id": stored.id, "name": name, "color": stored.color})
        if stored.completed_dates:
            habit_data[stored.id] = {day: True for day in stored.completed_dates}

    return {"habits": habits, "habitData": habit_data}


def to_stored_habits(data: HabitData, user_id: int) -> list[StoredHabit]:
    """Encrypt names and keep only completed days; list position becomes sort order."""
    stored = []
    for index, habit in enumerate(data.habits):
        entries = data.habit_data.get(habit.id, {})
        stored.append(
            StoredHabit(
                id=habit.id,
                name_encrypted=encrypt(habit.name, user_id),
                color=habit.color,
                sort_order=index,
                completed_dates=sorted(day for day, completed in entries.items() if completed),
            )
        )

    orphaned = set(data.habit_data) - {habit.id for habit in data.habits}
    if orphaned:
        logger.info(f"Dropping completion data for {len(orphaned)} unknown habit id(s)")

    return stored


async def save_habits(store: Store, user_id: int, data: HabitData) -> int:
    """Replace all of a user's habits and entries. Returns the number of habits saved."""
    stored = to_stored_habits(data, user_id)
    await store.replace_habits(user_id, stored)
    logger.info(f"Saved {len(stored)} habits for user {user_id}")
    return len(stored)
