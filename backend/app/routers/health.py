import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import text
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.services.storage import AssetStore, get_asset_store

router = APIRouter(tags=["health"])

log = logging.getLogger(__name__)


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/health/live")
def live():
    return {"status": "live"}


@router.get("/health/ready")
def ready(
    db: Session = Depends(get_db),
    assets: AssetStore = Depends(get_asset_store),
):
    try:
        db.execute(text("SELECT 1"))
    except Exception as e:
        log.warning("readiness: db check failed: %s", e)
        raise HTTPException(status_code=503, detail="db not ready") from e

    try:
        assets.ping()
    except Exception as e:
        log.warning("readiness: storage check failed: %s", e)
        raise HTTPException(status_code=503, detail="s3 not ready") from e

    return {"status": "ready"}
