import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request

from booking_lifecycle import BookingLifecycleController
from booking_schemas import BookingRequest
from dependencies import get_controller, require_debug_access
from errors import UpstreamError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


@router.post("/booking/create-cash-booking")
def create_cash_booking(body: BookingRequest, request: Request, background_tasks: BackgroundTasks,
                        controller: BookingLifecycleController = Depends(get_controller)):
    result = controller.create_cash_booking(
        body.booking_data,
        locale=body.locale,
        origin=request.headers.get("origin"),
        host=request.headers.get("host"),
        schedule=background_tasks.add_task,
    )
    return {"success": True, "bookingId": result.booking_id, "redirectUrl": result.redirect_url}


@router.get("/booking/get-booking")
def get_booking(booking_id: Optional[str] = None,
                controller: BookingLifecycleController = Depends(get_controller)):
    details = controller.get_booking_details(booking_id)
    return {"success": True, "bookingDetails": details.model_dump(mode="json", by_alias=True, exclude_none=True)}


@router.get("/check-bookings", dependencies=[Depends(require_debug_access)])
def check_bookings(controller: BookingLifecycleController = Depends(get_controller)):
    bookings = controller.recent_bookings(limit=5)
    return {"success": True, "bookings": [b.model_dump(mode="json", by_alias=True) for b in bookings]}


@router.get("/test-db", dependencies=[Depends(require_debug_access)])
def test_db(controller: BookingLifecycleController = Depends(get_controller)):
    status = controller.database_status()
    return {"success": True, "message": "Database connection successful!", **status}


@router.get("/test-email", dependencies=[Depends(require_debug_access)])
def test_email(controller: BookingLifecycleController = Depends(get_controller)):
    result = controller.notifier.send_test_email()
    if not result.succeeded:
        logger.error("Test email %s: %s", result.status, result.error)
        raise UpstreamError("Failed to send test email")
    return {
        "success": True,
        "message": "Test email sent successfully!",
        "details": {"from": controller.notifier.from_email, "to": result.recipient},
    }
