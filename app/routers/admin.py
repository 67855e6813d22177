"""Admin API endpoints for the human payment review workflow."""

from typing import Optional
from uuid import UUID

import httpx
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse, Response

from app.config import settings
from app.dependencies import get_messenger, get_store, require_admin
from app.logging_config import get_logger
from app.schemas.admin import (
    ActionResponse,
    CollectedDetails,
    PaymentSummary,
    ProfileResponse,
    ReadingOutcomeRequest,
    RejectRequest,
    UnverifiedPayment,
    UserSummary,
)
from app.services.normalizer import is_trusted_media_url
from app.services.profile import CollectedProfile
from app.services.review_service import ReviewError, ReviewOutcome, ReviewService
from app.services.state_machine import ServiceType, UserStatus

logger = get_logger("admin")

router = APIRouter(prefix="/admin", tags=["admin"])

REVIEW_ERROR_STATUS = {
    ReviewError.NOT_FOUND: 404,
    ReviewError.INVALID_STATE: 409,
    ReviewError.ALREADY_SENT: 409,
    ReviewError.INVALID_PAYLOAD: 400,
}


def _parse_status(value: Optional[str]) -> Optional[UserStatus]:
    if value is None:
        return None
    try:
        return UserStatus(value)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid status")


def _parse_service(value: Optional[str]) -> Optional[ServiceType]:
    if value is None:
        return None
    try:
        return ServiceType(value)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid service_type")


def _run(action, *args, **kwargs):
    try:
        outcome: ReviewOutcome = action(*args, **kwargs)
    except ReviewError as e:
        raise HTTPException(status_code=REVIEW_ERROR_STATUS.get(e.code, 400), detail=e.message)

    if not outcome.delivered:
        body = ActionResponse(ok=False, saved=True, delivered=False, error=outcome.delivery_error or "Failed to send message")
        return JSONResponse(status_code=502, content=body.model_dump())
    return ActionResponse(ok=True)


# === REVIEW ACTIONS ===


@router.post("/verify/{user_id}", response_model=ActionResponse, dependencies=[Depends(require_admin)])
def verify_payment(user_id: UUID, store=Depends(get_store), messenger=Depends(get_messenger)):
    return _run(ReviewService(store, messenger).verify, user_id)


@router.post("/reject/{user_id}", response_model=ActionResponse, dependencies=[Depends(require_admin)])
def reject_payment(user_id: UUID, request: RejectRequest, store=Depends(get_store), messenger=Depends(get_messenger)):
    return _run(
        ReviewService(store, messenger).reject,
        user_id,
        request.reason,
        note=request.note,
        received_amount_ghs=request.received_amount_ghs,
        expected_amount_ghs=request.expected_amount_ghs,
    )


@router.post("/complete/{user_id}", response_model=ActionResponse, dependencies=[Depends(require_admin)])
def complete_user(user_id: UUID, store=Depends(get_store), messenger=Depends(get_messenger)):
    return _run(ReviewService(store, messenger).complete, user_id)


@router.post("/reading/{user_id}", response_model=ActionResponse, dependencies=[Depends(require_admin)])
def send_reading(
    user_id: UUID,
    request: ReadingOutcomeRequest,
    store=Depends(get_store),
    messenger=Depends(get_messenger),
):
    return _run(
        ReviewService(store, messenger).send_reading_outcome,
        user_id,
        request.text,
        force_resend=request.force_resend,
    )


# === LISTINGS ===


@router.get("/users", response_model=list[UserSummary], dependencies=[Depends(require_admin)])
def list_users(status: Optional[str] = None, service_type: Optional[str] = None, store=Depends(get_store)):
    users = store.list_users(status=_parse_status(status), service_type=_parse_service(service_type))
    return [UserSummary.model_validate(user) for user in users]


@router.get("/users/{user_id}/profile", response_model=ProfileResponse, dependencies=[Depends(require_admin)])
def get_user_profile(user_id: UUID, store=Depends(get_store)):
    user = store.get_user_by_id(user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    conversation = store.get_conversation_by_user_id(user_id)
    payment = store.get_latest_payment_by_user_id(user_id)
    profile = CollectedProfile.from_row(conversation) if conversation else CollectedProfile()

    return ProfileResponse(
        user=UserSummary.model_validate(user),
        current_step=conversation.current_step if conversation else None,
        details=CollectedDetails(**profile.as_dict()),
        payment=PaymentSummary.model_validate(payment) if payment else None,
        reading_outcome_text=user.reading_outcome_text,
    )


@router.get("/payments", response_model=list[UnverifiedPayment], dependencies=[Depends(require_admin)])
def list_payments(verified: bool = False, service_type: Optional[str] = None, store=Depends(get_store)):
    if verified:
        raise HTTPException(status_code=400, detail="Invalid verified filter")

    rows = store.list_unverified_payments(service_type=_parse_service(service_type))
    return [
        UnverifiedPayment(
            **PaymentSummary.model_validate(payment).model_dump(),
            phone=user.phone,
            selected_plan=user.selected_plan,
        )
        for payment, user in rows
    ]


@router.get("/payments/{payment_id}/screenshot", dependencies=[Depends(require_admin)])
def get_payment_screenshot(payment_id: UUID, store=Depends(get_store), messenger=Depends(get_messenger)):
    """Proxy the provider-hosted screenshot; provider media needs account credentials."""
    payment = store.get_payment_by_id(payment_id)
    if not payment:
        raise HTTPException(status_code=404, detail="Payment not found")
    if not payment.screenshot_url or not is_trusted_media_url(payment.screenshot_url, settings.trusted_media_prefix):
        raise HTTPException(status_code=404, detail="Screenshot not found")

    try:
        content, content_type = messenger.fetch_media(payment.screenshot_url)
    except httpx.HTTPError as e:
        logger.error(f"Failed to fetch screenshot for payment {payment_id}: {e}")
        raise HTTPException(status_code=502, detail="Failed to fetch media")

    return Response(content=content, media_type=content_type, headers={"Cache-Control": "private, max-age=300"})
