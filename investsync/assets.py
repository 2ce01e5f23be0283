"""Holdings store and /api/assets CRUD router."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Optional, TypedDict

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import text

from investsync.db import get_session

logger = logging.getLogger(__name__)


class AssetRecord(TypedDict):
    id: str
    symbol: str
    amount: float
    ynab_account_id: str
    created_at: str
    updated_at: str


_COLUMNS = "id, symbol, amount, ynab_account_id, created_at, updated_at"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _validate(symbol: str, amount: float) -> str:
    symbol = symbol.strip()
    if not symbol:
        raise ValueError("Symbol must not be empty")
    if amount < 0:
        raise ValueError("Amount must not be negative")
    return symbol


def _to_record(row: Mapping) -> AssetRecord:
    return {
        "id": row["id"],
        "symbol": row["symbol"],
        "amount": float(row["amount"]),
        "ynab_account_id": row["ynab_account_id"],
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


async def list_assets() -> list[AssetRecord]:
    session = await get_session()
    try:
        result = await session.execute(
            text(f"SELECT {_COLUMNS} FROM assets ORDER BY created_at, symbol")
        )
        return [_to_record(row) for row in result.mappings().all()]
    finally:
        await session.close()


async def get_asset(asset_id: str) -> Optional[AssetRecord]:
    session = await get_session()
    try:
        result = await session.execute(
            text(f"SELECT {_COLUMNS} FROM assets WHERE id = :id"), {"id": asset_id},
        )
        row = result.mappings().first()
        return _to_record(row) if row else None
    finally:
        await session.close()


async def list_assets_for_account(account_id: str) -> list[AssetRecord]:
    session = await get_session()
    try:
        result = await session.execute(
            text(
                f"SELECT {_COLUMNS} FROM assets "
                "WHERE ynab_account_id = :account_id ORDER BY created_at, symbol"
            ),
            {"account_id": account_id},
        )
        return [_to_record(row) for row in result.mappings().all()]
    finally:
        await session.close()


async def create_asset(symbol: str, amount: float, ynab_account_id: str) -> AssetRecord:
    """Insert a holding.  Raises ``ValueError`` for an empty symbol or negative amount."""
    symbol = _validate(symbol, amount)
    now = _now()
    record: AssetRecord = {
        "id": str(uuid.uuid4()),
        "symbol": symbol,
        "amount": float(amount),
        "ynab_account_id": ynab_account_id,
        "created_at": now,
        "updated_at": now,
    }

    session = await get_session()
    try:
        await session.execute(
            text(
                "INSERT INTO assets (id, symbol, amount, ynab_account_id, created_at, updated_at) "
                "VALUES (:id, :symbol, :amount, :ynab_account_id, :created_at, :updated_at)"
            ),
            dict(record),
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()

    logger.info("Created asset %s (%s x %s) in account %s", record["id"], amount, symbol, ynab_account_id)
    return record


async def update_asset(
    asset_id: str,
    symbol: Optional[str] = None,
    amount: Optional[float] = None,
    ynab_account_id: Optional[str] = None,
) -> Optional[AssetRecord]:
    """Apply the given fields; returns ``None`` when the asset does not exist."""
    current = await get_asset(asset_id)
    if current is None:
        return None

    updated: AssetRecord = {
        **current,
        "symbol": current["symbol"] if symbol is None else symbol,
        "amount": current["amount"] if amount is None else float(amount),
        "ynab_account_id": current["ynab_account_id"] if ynab_account_id is None else ynab_account_id,
        "updated_at": _now(),
    }
    updated["symbol"] = _validate(updated["symbol"], updated["amount"])

    session = await get_session()
    try:
        await session.execute(
            text(
                "UPDATE assets SET symbol = :symbol, amount = :amount, "
                "ynab_account_id = :ynab_account_id, updated_at = :updated_at "
                "WHERE id = :id"
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


async def delete_asset(asset_id: str) -> bool:
    session = await get_session()
    try:
        result = await session.execute(
            text("DELETE FROM assets WHERE id = :id"), {"id": asset_id},
        )
        await session.commit()
        return result.rowcount > 0
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def replace_account_assets(
    account_id: str, holdings: Mapping[str, float],
) -> list[AssetRecord]:
    """Make the account's holdings exactly *holdings* (``{symbol: amount}``)."""
    now = _now()
    records: list[AssetRecord] = [
        {
            "id": str(uuid.uuid4()),
            "symbol": _validate(symbol, float(amount)),
            "amount": float(amount),
            "ynab_account_id": account_id,
            "created_at": now,
            "updated_at": now,
        }
        for symbol, amount in holdings.items()
    ]

    session = await get_session()
    try:
        await session.execute(
            text("DELETE FROM assets WHERE ynab_account_id = :account_id"),
            {"account_id": account_id},
        )
        if records:
            await session.execute(
                text(
                    "INSERT INTO assets (id, symbol, amount, ynab_account_id, created_at, updated_at) "
                    "VALUES (:id, :symbol, :amount, :ynab_account_id, :created_at, :updated_at)"
                ),
                [dict(r) for r in records],
            )
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()

    logger.info("Replaced holdings of account %s with %d assets", account_id, len(records))
    return records


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------


class CreateAssetRequest(BaseModel):
    symbol: str
    amount: float = Field(ge=0)
    ynab_account_id: str


class UpdateAssetRequest(BaseModel):
    symbol: Optional[str] = None
    amount: Optional[float] = Field(default=None, ge=0)
    ynab_account_id: Optional[str] = None


router = APIRouter(prefix="/api/assets", tags=["assets"])


@router.get("")
async def list_assets_endpoint() -> dict:
    assets = await list_assets()
    return {"assets": assets, "count": len(assets)}


@router.get("/{asset_id}")
async def get_asset_endpoint(asset_id: str) -> dict:
    asset = await get_asset(asset_id)
    if asset is None:
        raise HTTPException(status_code=404, detail="Asset not found")
    return asset


@router.post("", status_code=201)
async def create_asset_endpoint(body: CreateAssetRequest) -> dict:
    try:
        return await create_asset(body.symbol, body.amount, body.ynab_account_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.put("/{asset_id}")
async def update_asset_endpoint(asset_id: str, body: UpdateAssetRequest) -> dict:
    try:
        asset = await update_asset(
            asset_id,
            symbol=body.symbol,
            amount=body.amount,
            ynab_account_id=body.ynab_account_id,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    if asset is None:
        raise HTTPException(status_code=404, detail="Asset not found")
    return asset


@router.delete("/{asset_id}")
async def delete_asset_endpoint(asset_id: str) -> dict:
    if not await delete_asset(asset_id):
        raise HTTPException(status_code=404, detail="Asset not found")
    return {"status": "ok", "id": asset_id}
