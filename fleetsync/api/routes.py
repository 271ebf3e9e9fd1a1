# fleetsync/api/routes.py
from fastapi import APIRouter, Depends, Header, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from typing import List, Optional
from .. import crud, fleet_tools, schemas
from ..auth import extract_bearer
from ..db import get_db
from ..services import run_sync, summary_status_code
from ..utils import logger

router = APIRouter()

@router.get("/health")
def health():
    return {"status": "ok"}


@router.post("/sync")
def trigger_sync(payload: Optional[schemas.SyncRequest] = None, db: Session = Depends(get_db)):
    payload = payload or schemas.SyncRequest()
    logger.info("Sync requested (tenant=%s, provider=%s, entities=%s)", payload.tenant_id, payload.provider, payload.entities)
    summary = run_sync(db, tenant_id=payload.tenant_id, provider=payload.provider, entities=payload.entities)
    return JSONResponse(status_code=summary_status_code(summary), content=summary.model_dump(exclude_none=True))


@router.get("/sync/runs", response_model=List[schemas.SyncRunOut])
def sync_runs(
    tenant_id: str | None = Query(None),
    status: str | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db)
):
    return crud.list_sync_runs(db, tenant_id=tenant_id, status=status, limit=limit)


@router.post("/tools/fleet")
def fleet_tool(
    payload: schemas.FleetToolRequest,
    authorization: str | None = Header(None),
    db: Session = Depends(get_db)
):
    token = extract_bearer(authorization) or payload.access_token
    result = fleet_tools.run_tool(db, token, payload.tool, payload.args)
    return JSONResponse(status_code=500 if "error" in result else 200, content=result)
