"""Single-user settings store and /api/settings router."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Optional, TypedDict

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel
from sqlalchemy import text

from investsync.config import SYNC_SCHEDULES
from investsync.db import get_session

logger = logging.getLogger(__name__)


class SettingsRecord(TypedDict):
    id: str
    ynab_api_token: str
    sync_schedule: str
    target_budget_id: Optional[str]
    created_at: str
    updated_at: str


_COLUMNS = "id, ynab_api_token, sync_schedule, target_budget_id, created_at, updated_at"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _check_schedule(schedule: str) -> None:
    if schedule not in SYNC_SCHEDULES:
        raise ValueError(
            f"Unknown sync schedule {schedule!r}, expected one of: {', '.join(SYNC_SCHEDULES)}"
        )


def _to_record(row: Mapping) -> SettingsRecord:
    return {
        "id": row["id"],
        "ynab_api_token": row["ynab_api_token"],
        "sync_schedule": row["sync_schedule"],
        "target_budget_id": row["target_budget_id"],
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }


async def get_settings() -> Optional[SettingsRecord]:
    session = await get_session()
    try:
        result = await session.execute(
            text(f"SELECT {_COLUMNS} FROM user_settings ORDER BY created_at DESC LIMIT 1")
        )
        row = result.mappings().first()
        return _to_record(row) if row else None
    finally:
        await session.close()


async def save_settings(
    ynab_api_token: str,
    sync_schedule: str = "daily",
    target_budget_id: Optional[str] = None,
) -> SettingsRecord:
    """Store new settings, replacing any existing ones."""
    if not ynab_api_token.strip():
        raise ValueError("YNAB API token must not be empty")
    _check_schedule(sync_schedule)

    now = _now()
    record: SettingsRecord = {
        "id": str(uuid.uuid4()),
        "ynab_api_token": ynab_api_token.strip(),
        "sync_schedule": sync_schedule,
        "target_budget_id": target_budget_id or None,
        "created_at": now,
        "updated_at": now,
    }

    session = await get_session()
    try:
        await session.execute(text("DELETE FROM user_settings"))
        await session.execute(
            text(
                f"INSERT INTO user_settings ({_COLUMNS}) VALUES "
                "(:id, :ynab_api_token, :sync_schedule, :target_budget_id, :created_at, :updated_at)"
            ),
            dict(record),
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()

    logger.info("Saved user settings (schedule=%s)", sync_schedule)
    return record


async def update_settings(
    ynab_api_token: Optional[str] = None,
    sync_schedule: Optional[str] = None,
    target_budget_id: Optional[str] = None,
) -> Optional[SettingsRecord]:
    """Patch the stored settings; ``None`` when none exist yet."""
    current = await get_settings()
    if current is None:
        return None
    if sync_schedule is not None:
        _check_schedule(sync_schedule)

    updated: SettingsRecord = {
        **current,
        "ynab_api_token": ynab_api_token or current["ynab_api_token"],
        "sync_schedule": sync_schedule or current["sync_schedule"],
        "target_budget_id": (
            current["target_budget_id"] if target_budget_id is None else target_budget_id or None
        ),
        "updated_at": _now(),
    }

    session = await get_session()
    try:
        await session.execute(
            text(
                "UPDATE user_settings SET ynab_api_token = :ynab_api_token, "
                "sync_schedule = :sync_schedule, target_budget_id = :target_budget_id, "
                "updated_at = :updated_at WHERE id = :id"
            ),
            dict(updated),
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()
    return updated


def public_view(settings: SettingsRecord) -> dict:
    """Settings without the raw token."""
    token = settings["ynab_api_token"]
    return {
        "id": settings["id"],
        "has_ynab_token": bool(token),
        "ynab_token_hint": f"...{token[-4:]}" if len(token) > 4 else "",
        "sync_schedule": settings["sync_schedule"],
        "target_budget_id": settings["target_budget_id"],
        "created_at": settings["created_at"],
        "updated_at": settings["updated_at"],
    }


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------


class SaveSettingsRequest(BaseModel):
    ynab_api_token: str
    sync_schedule: str = "daily"
    target_budget_id: Optional[str] = None


class UpdateSettingsRequest(BaseModel):
    ynab_api_token: Optional[str] = None
    sync_schedule: Optional[str] = None
    target_budget_id: Optional[str] = None


router = APIRouter(prefix="/api/settings", tags=["settings"])


@router.get("")
async def get_settings_endpoint() -> dict:
    settings = await get_settings()
    if settings is None:
        raise HTTPException(status_code=404, detail="No settings configured")
    return public_view(settings)


@router.post("", status_code=201)
async def save_settings_endpoint(body: SaveSettingsRequest) -> dict:
    try:
        settings = await save_settings(
            body.ynab_api_token, body.sync_schedule, body.target_budget_id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return public_view(settings)


@router.put("")
async def update_settings_endpoint(body: UpdateSettingsRequest) -> dict:
    try:
        settings = await update_settings(
            body.ynab_api_token, body.sync_schedule, body.target_budget_id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    if settings is None:
        raise HTTPException(status_code=404, detail="No settings configured")
    return public_view(settings)
