"""
Read-only HTTP API over the populated rules database.

Usage:
    uvicorn wh40k_etl.api:app --port 3000
    wh40k-etl serve --port 3000
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Iterator

import psycopg
from fastapi import APIRouter, Depends, FastAPI, HTTPException

from wh40k_etl import queries

logger = logging.getLogger(__name__)

DB_DSN_ENV = "WH40K_DB_DSN"


def get_conn() -> Iterator[psycopg.Connection]:
    """Dependency: one autocommit connection per request."""
    dsn = os.getenv(DB_DSN_ENV, "")
    if not dsn:
        raise HTTPException(status_code=503, detail=f"{DB_DSN_ENV} is not configured")
    with psycopg.connect(dsn, autocommit=True) as conn:
        yield conn


router = APIRouter(prefix="/api")


@router.get("/health")
def health() -> dict:
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/factions")
def factions(conn: psycopg.Connection = Depends(get_conn)) -> list[dict]:
    try:
        return queries.list_factions(conn)
    except psycopg.Error as exc:
        logger.error("Failed to fetch factions: %s", exc)
        raise HTTPException(status_code=500, detail="Failed to retrieve data from the database.")


@router.get("/datasheets/{datasheet_id}")
def datasheet(datasheet_id: int, conn: psycopg.Connection = Depends(get_conn)) -> dict:
    try:
        row = queries.get_row(conn, "datasheets", datasheet_id)
    except psycopg.Error as exc:
        logger.error("Failed to fetch datasheet %s: %s", datasheet_id, exc)
        raise HTTPException(status_code=500, detail="Failed to retrieve data.")
    if row is None:
        raise HTTPException(status_code=404, detail="Datasheet not found")
    # TODO: join models, wargear, keywords, abilities and leader links into the
    # nested datasheet representation; only the base row is returned for now.
    return {
        "message": "Datasheet found. Nested representation not yet assembled.",
        "data": row,
    }


def create_app() -> FastAPI:
    application = FastAPI(
        title="WH40K Rules API",
        description="Read-only access to the Wahapedia rules dataset",
        version="0.1.0",
    )
    application.include_router(router)
    return application


app = create_app()
