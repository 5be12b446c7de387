"""Habit data as exchanged with the browser client and in backup files."""

from datetime import date

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def _is_iso_day(value: str) -> bool:
    # fromisoformat also accepts compact forms like 20240101
    if len(value) != 10:
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


class HabitItem(BaseModel):
    id: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=255)
    color: str = Field(default="", max_length=32)


class HabitData(BaseModel):
    """``{"habits": [...], "habitData": {habitId: {"YYYY-MM-DD": bool}}}``"""

    model_config = ConfigDict(populate_by_name=True)

    habits: list[HabitItem]
    habit_data: dict[str, dict[str, bool]] = Field(default_factory=dict, alias="habitData")

    @field_validator("habit_data")
    @classmethod
    def check_dates(cls, value: dict[str, dict[str, bool]]) -> dict[str, dict[str, bool]]:
        for entries in value.values():
            for day in entries:
                if not _is_iso_day(day):
                    raise ValueError(f"invalid date '{day}', expected YYYY-MM-DD")
        return value

    @model_validator(mode="after")
    def check_unique_ids(self) -> "HabitData":
        ids = [habit.id for habit in self.habits]
        if len(ids) != len(set(ids)):
            raise ValueError("habit ids must be unique")
        return self


class ImportRequest(BaseModel):
    data: HabitData
