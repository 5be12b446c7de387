import logging
from typing import Literal

from fastapi import APIRouter, Response

from app.api.deps import CSRFProtected, CurrentUser, StoreDep
from app.schemas.data import HabitData, ImportRequest
from app.services import export
from app.services.habits import load_habits, save_habits
from app.utils import clock

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/data", tags=["data"])


@router.get("/load")
async def load(current_user: CurrentUser, store: StoreDep):
    data = await load_habits(store, current_user.id)
    return {"success": True, "data": data}


@router.post("/save", dependencies=[CSRFProtected])
async def save(body: HabitData, current_user: CurrentUser, store: StoreDep):
    """Replace the user's habits and completion marks with the submitted set."""
    count = await save_habits(store, current_user.id, body)
    return {"success": True, "message": "Data saved successfully", "habits": count}


@router.get("/export")
async def export_data(
    current_user: CurrentUser,
    store: StoreDep,
    format: Literal["json", "csv"] = "json",
):
    """Download a backup of the user's habits as JSON or CSV."""
    data = await load_habits(store, current_user.id)
    content, media_type = export.render(data, format)
    filename = export.export_filename(format, clock.utcnow().date())

    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/import", dependencies=[CSRFProtected])
async def import_data(body: ImportRequest, current_user: CurrentUser, store: StoreDep):
    """Restore a JSON backup, replacing everything currently stored."""
    count = await save_habits(store, current_user.id, body.data)
    logger.info(f"Imported {count} habits for user {current_user.id}")
    return {"success": True, "message": "Data imported successfully", "habits": count}
