from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
import asyncio
import os

from sharedgallery.core.config import logger, STATIC_DIR, RUN_DUPLICATE_AUDIT, AUDIT_INTERVAL_MIN
from sharedgallery.routers import public_api, duplicates

app = FastAPI(title="Shared Gallery")

# ---- CORS setup ----
_origins_env = os.getenv("ALLOWED_ORIGINS") or "http://localhost:5173,http://127.0.0.1:5173"
ALLOWED_ORIGINS = [o.strip() for o in _origins_env.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=False,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)

app.include_router(public_api.router)
app.include_router(duplicates.router)

# Local object store fallback serves uploads from here
os.makedirs(STATIC_DIR, exist_ok=True)
app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")

_background: set = set()


@app.on_event("startup")
async def _init_schema():
    try:
        from sharedgallery.core.database import init_db
        init_db()
    except Exception as _ex:
        logger.warning(f"init_db failed: {_ex}")


@app.on_event("startup")
async def _start_duplicate_audit():
    if not RUN_DUPLICATE_AUDIT:
        return
    from sharedgallery.pipeline.auditor import DuplicateAuditor
    from sharedgallery.utils.notifier import WebhookNotifier
    from sharedgallery.utils.records import get_record_store

    auditor = DuplicateAuditor(get_record_store(), WebhookNotifier())
    task = asyncio.create_task(auditor.run_periodically(AUDIT_INTERVAL_MIN))
    _background.add(task)
    logger.info(f"Duplicate audit scheduled every {AUDIT_INTERVAL_MIN} min")


@app.on_event("shutdown")
async def _stop_background():
    for task in list(_background):
        task.cancel()
    if _background:
        await asyncio.gather(*_background, return_exceptions=True)
    _background.clear()


@app.get("/health")
async def health():
    return {"ok": True}
