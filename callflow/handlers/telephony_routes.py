"""
Telephony provider webhooks.

The provider delivers callbacks either as a form-encoded POST or as a GET with
query parameters; both are accepted on each endpoint.
"""

import logging
from typing import Dict

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from callflow.config.constants import LOGGER_NAME
from callflow.errors import InternalInconsistency
from callflow.handlers.dependencies import get_gateway, get_reconciler
from callflow.reconciler.service import CallReconciler
from callflow.services.telephony_gateway import ExotelGateway

logger = logging.getLogger(LOGGER_NAME)

router = APIRouter(prefix="/telephony", tags=["telephony"])


async def callback_params(request: Request) -> Dict[str, str]:
    """Flatten query parameters and any form body into one mapping."""
    params = {key: value for key, value in request.query_params.items()}
    if request.method == "POST":
        form = await request.form()
        for key, value in form.items():
            if isinstance(value, str):
                params[key] = value
    logger.debug(f"Telephony callback on {request.url.path}: {params}")
    return params


@router.api_route("/answer", methods=["GET", "POST"])
async def answer_webhook(
    request: Request,
    reconciler: CallReconciler = Depends(get_reconciler),
):
    """Return the directive telling the provider where to stream the answered call."""
    params = await callback_params(request)
    directive = await reconciler.handle_answer(params)
    return Response(content=directive, media_type="application/xml")


@router.api_route("/status", methods=["GET", "POST"])
async def status_webhook(
    request: Request,
    reconciler: CallReconciler = Depends(get_reconciler),
    gateway: ExotelGateway = Depends(get_gateway),
):
    params = await callback_params(request)
    event = gateway.parse_callback(params)

    if event.kind == "unhandled":
        logger.info(
            f"Ignoring unhandled telephony status {event.raw_status!r} "
            f"for provider call {event.source_call_id}"
        )
        return {"received": True, "applied": False}

    try:
        record = await reconciler.apply(event)
    except InternalInconsistency as e:
        logger.error(f"Dropping telephony callback: {e}")
        raise HTTPException(status_code=400, detail="Callback could not be correlated to a call")

    return {"received": True, "applied": True, "status": record.status.value}
