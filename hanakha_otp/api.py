"""
OTP HTTP Routes
===============
FastAPI surface over the orchestrator, mirroring the send-otp and verify-otp
edge functions the web app calls.
"""

from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import structlog

from .errors import OTPErrorCode, ValidationError
from .logging_setup import bind_request_context
from .otp.service import OTPOrchestrator

logger = structlog.get_logger(__name__)


class SendOTPRequest(BaseModel):
    user_id: str = Field(default="", description="Owner of the challenge")
    contact_info: str = Field(default="", description="Email address or +country-code phone number")
    otp_type: str = Field(default="", description="'email' or 'mobile'")


class VerifyOTPRequest(BaseModel):
    user_id: str = ""
    otp_code: str = ""
    otp_type: str = ""


class ResendStatusResponse(BaseModel):
    can_send: bool
    wait_time_seconds: int


def _status_for(success: bool, error_code: Optional[str]) -> int:
    if success:
        return 200
    if error_code == OTPErrorCode.TOO_MANY_ATTEMPTS.value:
        return 429
    if error_code == OTPErrorCode.TIMEOUT.value:
        return 504
    return 400


def create_otp_router(orchestrator: OTPOrchestrator) -> APIRouter:
    """
    Create the OTP router bound to one orchestrator instance.

    Returns:
        FastAPI router mounted under /otp
    """
    router = APIRouter(prefix="/otp", tags=["OTP"])

    @router.post("/send")
    async def send_otp(body: SendOTPRequest):
        with bind_request_context(user_id=body.user_id):
            result = await orchestrator.send_otp(body.user_id, body.contact_info, body.otp_type)
        return JSONResponse(
            content=result.to_dict(),
            status_code=_status_for(result.success, result.error_code),
        )

    @router.post("/verify")
    async def verify_otp(body: VerifyOTPRequest):
        with bind_request_context(user_id=body.user_id):
            result = await orchestrator.verify_otp(body.user_id, body.otp_code, body.otp_type)
        return JSONResponse(
            content=result.to_dict(),
            status_code=_status_for(result.success, result.error_code),
        )

    @router.get("/resend-status", response_model=ResendStatusResponse)
    async def resend_status(user_id: str = Query(...), otp_type: str = Query(...)):
        try:
            status = orchestrator.can_resend_otp(user_id, otp_type)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=e.message)
        return ResendStatusResponse(can_send=status.can_send, wait_time_seconds=status.wait_time_seconds)

    @router.get("/cache-status")
    async def cache_status(user_id: str = Query(...), otp_type: str = Query(...)):
        try:
            entry = orchestrator.get_cache_status(user_id, otp_type)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=e.message)
        if entry is None:
            return {"cached": False}
        data = entry.to_dict()
        data.pop("code", None)
        return {"cached": True, **data}

    @router.delete("/cache")
    async def clear_cache(user_id: str = Query(...), otp_type: str = Query(...)):
        try:
            removed = orchestrator.clear_cache(user_id, otp_type)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=e.message)
        logger.info("otp_cache_entry_cleared", user_id=user_id, otp_type=otp_type, removed=removed)
        return {"cleared": removed}

    return router
