import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from booking_lifecycle import BookingLifecycleController
from dependencies import get_controller
from errors import BookingError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/api/stripe/webhook")
async def stripe_webhook(request: Request, background_tasks: BackgroundTasks,
                         controller: BookingLifecycleController = Depends(get_controller)):
    # signature verification needs the body exactly as Stripe sent it
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    try:
        outcome = await run_in_threadpool(
            controller.handle_webhook, payload, sig_header, background_tasks.add_task
        )
    except BookingError as e:
        return JSONResponse(status_code=e.status_code, content={"error": e.message})

    logger.info("Webhook processed: %s", outcome)
    return JSONResponse(content={"received": True})
