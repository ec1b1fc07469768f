from typing import List, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from sharedgallery.core.config import logger
from sharedgallery.pipeline.auditor import DuplicateAuditor
from sharedgallery.utils.notifier import WebhookNotifier
from sharedgallery.utils.records import RecordStore, get_record_store

router = APIRouter(prefix="/api/duplicates", tags=["duplicates"])

_auditor: Optional[DuplicateAuditor] = None


def get_auditor(records: RecordStore = Depends(get_record_store)) -> DuplicateAuditor:
    global _auditor
    if _auditor is None:
        _auditor = DuplicateAuditor(records, WebhookNotifier())
    return _auditor


class DuplicateGroupOut(BaseModel):
    filename: str
    file_size: Optional[int] = None
    original: dict
    removable: List[dict]
    sql: str


class DuplicatesOut(BaseModel):
    groups: List[DuplicateGroupOut]
    count: int


def _group_out(group) -> DuplicateGroupOut:
    return DuplicateGroupOut(
        filename=group.filename,
        file_size=group.file_size,
        original=group.original.to_dict(),
        removable=[m.to_dict() for m in group.removable],
        sql=group.delete_statement(),
    )


@router.get("", response_model=DuplicatesOut)
async def list_duplicates(auditor: DuplicateAuditor = Depends(get_auditor)):
    try:
        groups = await auditor.audit(report=False)
    except Exception as ex:
        logger.error(f"duplicate audit failed: {ex}")
        return JSONResponse({"error": "audit failed"}, status_code=500)
    return DuplicatesOut(groups=[_group_out(g) for g in groups], count=len(groups))


@router.post("/report")
async def report_duplicates(auditor: DuplicateAuditor = Depends(get_auditor)):
    try:
        groups = await auditor.audit(report=True)
    except Exception as ex:
        logger.error(f"duplicate audit failed: {ex}")
        return JSONResponse({"error": "audit failed"}, status_code=500)
    return {"ok": True, "count": len(groups), "reported": bool(groups)}
