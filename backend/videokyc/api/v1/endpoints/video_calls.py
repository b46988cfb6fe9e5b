"""
Video Call Endpoints
Create, claim and close video-KYC call records
"""
import logging
from fastapi import APIRouter, HTTPException, Depends
from pydantic import BaseModel, Field
from typing import List, Optional

from videokyc.api.v1.dependencies import (
    get_call_service,
    get_current_user,
    require_admin,
    CurrentUser,
)
from videokyc.domain.interfaces.call_record_store import (
    CallStoreError,
    ActiveCallExistsError,
    CallRecordNotFoundError,
    StaleCallRecordError,
)
from videokyc.domain.models.call_record import CallRecord, VerificationResult
from videokyc.services.call_service import CallService, CallAccessError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/video-calls", tags=["video-calls"])


class RejectRequest(BaseModel):
    notes: Optional[str] = None


class DecisionRequest(BaseModel):
    """Verdict recorded by the verifier"""
    result: VerificationResult
    notes: Optional[str] = Field(None, max_length=2000)


def to_http_error(e: Exception) -> HTTPException:
    """Map call errors onto HTTP status codes"""
    if isinstance(e, CallRecordNotFoundError):
        return HTTPException(status_code=404, detail=e.message)
    if isinstance(e, (ActiveCallExistsError, StaleCallRecordError)):
        return HTTPException(status_code=409, detail=e.message)
    if isinstance(e, CallAccessError):
        return HTTPException(status_code=403, detail=e.message)
    if isinstance(e, ValueError):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, CallStoreError):
        return HTTPException(status_code=502, detail=e.message)
    return HTTPException(status_code=500, detail="Unexpected error")


@router.post("", response_model=CallRecord, status_code=201)
async def request_call(
    current_user: CurrentUser = Depends(get_current_user),
    service: CallService = Depends(get_call_service),
):
    """Ask for a verification call; at most one live call per user"""
    try:
        return await service.request_call(current_user.id)
    except CallStoreError as e:
        raise to_http_error(e)


@router.get("/active", response_model=CallRecord)
async def get_active_call(
    current_user: CurrentUser = Depends(get_current_user),
    service: CallService = Depends(get_call_service),
):
    try:
        record = await service.get_active_call(current_user.id)
    except CallStoreError as e:
        raise to_http_error(e)
    if record is None:
        raise HTTPException(status_code=404, detail="No active verification call")
    return record


@router.get("/waiting", response_model=List[CallRecord])
async def list_waiting_calls(
    admin: CurrentUser = Depends(require_admin),
    service: CallService = Depends(get_call_service),
):
    try:
        return await service.list_waiting_calls()
    except CallStoreError as e:
        raise to_http_error(e)


@router.get("/{call_id}", response_model=CallRecord)
async def get_call(
    call_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    service: CallService = Depends(get_call_service),
):
    try:
        return await service.get_call(call_id, current_user.id, is_admin=current_user.is_admin)
    except (CallStoreError, CallAccessError) as e:
        raise to_http_error(e)


@router.post("/{call_id}/accept", response_model=CallRecord)
async def accept_call(
    call_id: str,
    admin: CurrentUser = Depends(require_admin),
    service: CallService = Depends(get_call_service),
):
    """Claim a waiting call; 409 if another verifier got there first"""
    try:
        record = await service.accept(call_id, admin.id)
    except (CallStoreError, CallAccessError) as e:
        raise to_http_error(e)
    logger.info(f"Call {call_id} accepted by {admin.id}", extra={"call_id": call_id})
    return record


@router.post("/{call_id}/start", response_model=CallRecord)
async def start_call(
    call_id: str,
    admin: CurrentUser = Depends(require_admin),
    service: CallService = Depends(get_call_service),
):
    try:
        return await service.start(call_id, admin.id)
    except (CallStoreError, CallAccessError) as e:
        raise to_http_error(e)


@router.post("/{call_id}/reject", response_model=CallRecord)
async def reject_call(
    call_id: str,
    body: Optional[RejectRequest] = None,
    admin: CurrentUser = Depends(require_admin),
    service: CallService = Depends(get_call_service),
):
    try:
        return await service.reject(call_id, admin.id, notes=body.notes if body else None)
    except CallStoreError as e:
        raise to_http_error(e)


@router.post("/{call_id}/cancel", response_model=CallRecord)
async def cancel_call(
    call_id: str,
    current_user: CurrentUser = Depends(get_current_user),
    service: CallService = Depends(get_call_service),
):
    try:
        return await service.cancel(call_id, current_user.id)
    except (CallStoreError, CallAccessError) as e:
        raise to_http_error(e)


@router.post("/{call_id}/decision", response_model=CallRecord)
async def submit_decision(
    call_id: str,
    body: DecisionRequest,
    admin: CurrentUser = Depends(require_admin),
    service: CallService = Depends(get_call_service),
):
    """Record approved/rejected for a call in progress"""
    try:
        record = await service.decide(call_id, admin.id, body.result, body.notes)
    except (CallStoreError, CallAccessError, ValueError) as e:
        raise to_http_error(e)
    logger.info(
        f"Call {call_id} completed: {record.verification_result.value}",
        extra={"call_id": call_id},
    )
    return record
