"""Tests for habit persistence with encrypted names."""

import pytest

from app.core.encryption import decrypt
from app.schemas.data import HabitData
from app.services.habits import load_habits, save_habits, to_stored_habits
from app.storage.records import StoredHabit

SAMPLE = {
    "habits": [
        {"id": "h1", "name": "Drink water", "color": "#ff6b35"},
        {"id": "h2", "name": "Read", "color": "#2ea043"},
    ],
    "habitData": {
        "h1": {"2026-03-01": True, "2026-02-28": True, "2026-02-27": False},
        "h2": {"2026-03-02": True},
        "ghost": {"2026-03-02": True},
    },
}


def test_to_stored_habits_encrypts_names():
    stored = to_stored_habits(HabitData.model_validate(SAMPLE), 7)

    assert [h.id for h in stored] == ["h1", "h2"]
    assert [h.sort_order for h in stored] == [0, 1]
    assert "Drink water" not in stored[0].name_encrypted
    assert decrypt(stored[0].name_encrypted, 7) == "Drink water"
    # false entries are not kept
    assert stored[0].completed_dates == ["2026-02-28", "2026-03-01"]


@pytest.mark.asyncio
class TestHabitStorage:
    async def test_save_and_load(self, store, test_user):
        count = await save_habits(store, test_user.id, HabitData.model_validate(SAMPLE))
        assert count == 2

        data = await load_habits(store, test_user.id)
        assert data == {
            "habits": [
                {"id": "h1", "name": "Drink water", "color": "#ff6b35"},
                {"id": "h2", "name": "Read", "color": "#2ea043"},
            ],
            "habitData": {
                "h1": {"2026-02-28": True, "2026-03-01": True},
                "h2": {"2026-03-02": True},
            },
        }

    async def test_load_empty(self, store, test_user):
        assert await load_habits(store, test_user.id) == {"habits": [], "habitData": {}}

    async def test_save_replaces_previous(self, store, test_user):
        await save_habits(store, test_user.id, HabitData.model_validate(SAMPLE))
        await save_habits(store, test_user.id, HabitData(habits=[], habit_data={}))
        assert await load_habits(store, test_user.id) == {"habits": [], "habitData": {}}

    async def test_undecryptable_habit_is_skipped(self, store, test_user):
        await save_habits(store, test_user.id, HabitData.model_validate(SAMPLE))
        habits = await store.get_habits(test_user.id)
        habits.append(StoredHabit(id="bad", name_encrypted="garbage", color="", sort_order=2))
        await store.replace_habits(test_user.id, habits)

        data = await load_habits(store, test_user.id)
        assert [h["id"] for h in data["habits"]] == ["h1", "h2"]

    async def test_names_are_bound_to_user(self, store, test_user):
        """Ciphertext copied to another account does not decrypt there."""
        other = await store.create_user("other@example.com", "hash")
        await save_habits(store, test_user.id, HabitData.model_validate(SAMPLE))
        await store.replace_habits(other.id, await store.get_habits(test_user.id))

        assert (await load_habits(store, other.id))["habits"] == []
