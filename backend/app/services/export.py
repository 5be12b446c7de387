"""Backup file rendering for a user's habit data."""

import csv
import io
import json
from datetime import date
from typing import Any

CSV_HEADER = ["Habit ID", "Habit Name", "Date", "Completed"]


def export_filename(fmt: str, today: date) -> str:
    return f"habit-tracker-backup-{today.isoformat()}.{fmt}"


def render_json(data: dict[str, Any]) -> str:
    return json.dumps(data, indent=2)


def render_csv(data: dict[str, Any]) -> str:
    """One row per completed day, in habit order then date order."""
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(CSV_HEADER)

    habit_data = data.get("habitData", {})
    for habit in data.get("habits", []):
        entries = habit_data.get(habit["id"], {})
        for day in sorted(entries):
            if entries[day]:
                writer.writerow([habit["id"], habit["name"], day, "true"])

    return output.getvalue()


def render(data: dict[str, Any], fmt: str) -> tuple[str, str]:
    """Return ``(content, media_type)`` for an export format."""
    if fmt == "csv":
        return render_csv(data), "text/csv"
    if fmt == "json":
        return render_json(data), "application/json"
    raise ValueError(f"Unsupported export format: {fmt}")
