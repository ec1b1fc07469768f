from datetime import datetime, timedelta, timezone
import random

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy import func
from sqlalchemy.orm import Session

from sharedgallery.core.config import logger
from sharedgallery.core.database import get_db
from sharedgallery.models.gallery import GalleryImage

router = APIRouter(prefix="/api/v1/images", tags=["public"])

_ORDER_COLUMNS = {
    "created_at": GalleryImage.created_at,
    "filename": GalleryImage.filename,
    "file_size": GalleryImage.file_size,
}


def _ok(data, **extra):
    body = {"success": True, "data": data, "error": None}
    body.update(extra)
    return body


def _fail(message: str, status_code: int = 500):
    return JSONResponse({"success": False, "data": None, "error": message}, status_code=status_code)


def _page(query, page: int, limit: int, order_by: str, order: str):
    col = _ORDER_COLUMNS[order_by]
    total = query.count()
    rows = (
        query.order_by(col.asc() if order == "asc" else col.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return _ok([r.to_dict() for r in rows], total=total, page=page, limit=limit)


@router.get("")
def list_images(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    order_by: str = Query("created_at", pattern="^(created_at|filename|file_size)$"),
    order: str = Query("desc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
):
    try:
        return _page(db.query(GalleryImage), page, limit, order_by, order)
    except Exception as ex:
        logger.warning(f"list_images failed: {ex}")
        return _fail("Failed to load images")


@router.get("/random")
def random_images(count: int = Query(10, ge=1, le=100), db: Session = Depends(get_db)):
    try:
        ids = [row[0] for row in db.query(GalleryImage.id).all()]
        picked = random.sample(ids, min(count, len(ids)))
        rows = db.query(GalleryImage).filter(GalleryImage.id.in_(picked)).all() if picked else []
        return _ok([r.to_dict() for r in rows], total=len(rows))
    except Exception as ex:
        logger.warning(f"random_images failed: {ex}")
        return _fail("Failed to load images")


@router.get("/stats")
def gallery_stats(db: Session = Depends(get_db)):
    try:
        total, uploaders, size = db.query(
            func.count(GalleryImage.id),
            func.count(func.distinct(GalleryImage.uploader_name)),
            func.coalesce(func.sum(GalleryImage.file_size), 0),
        ).one()
        since = datetime.now(timezone.utc) - timedelta(hours=24)
        recent = db.query(GalleryImage).filter(GalleryImage.created_at > since).count()
        return _ok({
            "totalImages": int(total or 0),
            "totalUploaders": int(uploaders or 0),
            "totalSize": int(size or 0),
            "recentUploads": int(recent),
        })
    except Exception as ex:
        logger.warning(f"gallery_stats failed: {ex}")
        return _fail("Failed to load stats")


@router.get("/search")
def search_images(
    q: str = Query("", max_length=200),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    order_by: str = Query("created_at", pattern="^(created_at|filename|file_size)$"),
    order: str = Query("desc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
):
    q = q.strip()
    if not q:
        return _ok([], total=0, page=page, limit=limit)
    try:
        query = db.query(GalleryImage).filter(GalleryImage.filename.ilike(f"%{q}%"))
        return _page(query, page, limit, order_by, order)
    except Exception as ex:
        logger.warning(f"search_images failed: {ex}")
        return _fail("Search failed")


@router.get("/uploader/{uploader_name}")
def images_by_uploader(
    uploader_name: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    order_by: str = Query("created_at", pattern="^(created_at|filename|file_size)$"),
    order: str = Query("desc", pattern="^(asc|desc)$"),
    db: Session = Depends(get_db),
):
    try:
        query = db.query(GalleryImage).filter(GalleryImage.uploader_name == uploader_name)
        return _page(query, page, limit, order_by, order)
    except Exception as ex:
        logger.warning(f"images_by_uploader failed: {ex}")
        return _fail("Failed to load images")


@router.get("/{image_id}")
def get_image(image_id: str, db: Session = Depends(get_db)):
    rec = db.query(GalleryImage).filter(GalleryImage.id == image_id).first()
    if not rec:
        return _fail("Image not found", status_code=404)
    return _ok(rec.to_dict())
