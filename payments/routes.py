from typing import Optional

from fastapi import APIRouter, Depends, Request

from booking_lifecycle import BookingLifecycleController
from booking_schemas import BookingRequest
from dependencies import get_controller

router = APIRouter(prefix="/api/stripe")


@router.post("/create-checkout-session")
def create_checkout_session(body: BookingRequest, request: Request,
                            controller: BookingLifecycleController = Depends(get_controller)):
    checkout = controller.create_card_checkout(
        body.booking_data,
        locale=body.locale,
        origin=request.headers.get("origin"),
        host=request.headers.get("host"),
    )
    return {
        "success": True,
        "sessionId": checkout.session_id,
        "url": checkout.url,
        "bookingId": checkout.booking_id,
    }


@router.get("/verify-session")
def verify_session(session_id: Optional[str] = None,
                   controller: BookingLifecycleController = Depends(get_controller)):
    verification = controller.verify_session(session_id)
    return {
        "success": True,
        "paymentStatus": verification.payment_status,
        "bookingDetails": verification.booking_details.model_dump(mode="json", by_alias=True, exclude_none=True),
    }
