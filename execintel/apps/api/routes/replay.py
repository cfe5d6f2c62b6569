from __future__ import annotations

import json
import logging
from typing import AsyncGenerator

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from execintel.apps.api.deps import Principal, get_db, reject_tenant_id_in_body, require_role
from execintel.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from execintel.apps.api.response import get_request_id, success_response
from execintel.core.errors import ConflictError, ExecIntelError, UpstreamFailure
from execintel.domain.mapping import replay_run_to_dict
from execintel.persistence.db import SessionLocal
from execintel.services import replay as replay_service


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/audit-replays", tags=["audit-replay"], responses=DEFAULT_ERROR_RESPONSES)

_SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Content-Type": "text/event-stream",
    "Connection": "keep-alive",
}


class ReplayCreateRequest(BaseModel):
    report_id: str = Field(min_length=1)

    model_config = {"extra": "forbid"}


def _wrap_payload(payload_type: str, request_id: str, data: dict) -> dict:
    return {"type": payload_type, "request_id": request_id, "data": data}


def _sse_message(payload: dict) -> str:
    # One compact JSON line per frame; the event name is always "message".
    data = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    return f"event: message\ndata: {data}\n\n"


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_replay_run(
    request: Request,
    payload: ReplayCreateRequest,
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
    _tenant_guard: None = Depends(reject_tenant_id_in_body),
) -> dict:
    try:
        run = await replay_service.create_run(
            db,
            tenant_id=principal.tenant_id,
            report_id=payload.report_id,
            actor_id=principal.subject_id,
        )
    except SQLAlchemyError as exc:
        raise UpstreamFailure("Failed to create replay run", exc) from exc
    return success_response(request=request, data=replay_run_to_dict(run))


@router.get("/{run_id}")
async def get_replay_run(
    run_id: str,
    request: Request,
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> dict:
    run = await replay_service.get_run(db, tenant_id=principal.tenant_id, run_id=run_id)
    if run is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Replay run not found")
    return success_response(request=request, data=replay_run_to_dict(run))


@router.get("/{run_id}/stream")
async def stream_replay_run(
    run_id: str,
    http_request: Request,
    principal: Principal = Depends(require_role("reader")),
    db: AsyncSession = Depends(get_db),
) -> StreamingResponse:
    run = await replay_service.get_run(db, tenant_id=principal.tenant_id, run_id=run_id)
    if run is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Replay run not found")
    if run.status != "queued":
        raise ConflictError(f"Replay run is already {run.status}")
    request_id = get_request_id(http_request)
    tenant_id = principal.tenant_id

    async def event_stream() -> AsyncGenerator[str, None]:
        yield _sse_message(_wrap_payload("connected", request_id, {"runId": run_id}))
        # The request-scoped session is closed before the body streams.
        async with SessionLocal() as session:
            events = replay_service.execute_run(session, tenant_id=tenant_id, run_id=run_id)
            claimed = False
            finished = False
            try:
                async for event in events:
                    claimed = True
                    if await http_request.is_disconnected():
                        logger.info("audit_replay_client_disconnected run_id=%s", run_id)
                        return
                    yield _sse_message(_wrap_payload(event["type"], request_id, event["data"]))
                finished = True
            except ExecIntelError as exc:
                finished = True
                yield _sse_message(
                    _wrap_payload("replay.failed", request_id, {"runId": run_id, "error": str(exc)})
                )
            finally:
                await events.aclose()
                # A claimed run must not stay running once the stream ends.
                if claimed and not finished:
                    await replay_service.abandon_run(
                        session, tenant_id=tenant_id, run_id=run_id, error="client_disconnected"
                    )

    return StreamingResponse(event_stream(), headers=_SSE_HEADERS, media_type="text/event-stream")
