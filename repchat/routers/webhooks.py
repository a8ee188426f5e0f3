"""Twilio webhooks: rep SMS replies and bridge conversation events."""

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.orm import Session

from repchat.config import settings
from repchat.database import get_db
from repchat.logging_config import get_logger
from repchat.routers.deps import http_error
from repchat.services.errors import ServiceError
from repchat.services.inbound_service import handle_bridge_message, handle_rep_sms
from repchat.services.twilio_service import validate_signature

logger = get_logger("webhooks")

router = APIRouter(tags=["webhooks"])

EMPTY_TWIML = '<?xml version="1.0" encoding="UTF-8"?><Response></Response>'
MESSAGE_ADDED_EVENT = "onMessageAdded"


async def _read_form(request: Request) -> dict[str, str]:
    """Form params of a Twilio callback, rejected with 403 when signature checks are on and fail."""
    form = await request.form()
    params = {key: str(value) for key, value in form.items()}

    if settings.twilio_validate_signatures:
        signature = request.headers.get("X-Twilio-Signature")
        if not settings.twilio_auth_token or not validate_signature(
            settings.twilio_auth_token, str(request.url), params, signature
        ):
            logger.warning(
                "Rejected Twilio webhook with invalid signature",
                extra={"context": {"url": str(request.url)}},
            )
            raise HTTPException(status_code=403, detail="Invalid signature")
    return params


@router.post("/twilio-inbound")
async def twilio_inbound(request: Request, db: Session = Depends(get_db)):
    """SMS from a rep. From is the rep's phone, To is the customer number the rep replied to."""
    params = await _read_form(request)
    rep_phone = params.get("From", "")
    customer_phone = params.get("To", "")
    body = params.get("Body", "")

    if rep_phone and customer_phone and body:
        try:
            handle_rep_sms(db, rep_phone, customer_phone, body)
        except ServiceError as e:
            raise http_error(e)
    else:
        logger.warning("Inbound SMS missing From, To or Body")

    return Response(content=EMPTY_TWIML, media_type="text/xml")


@router.post("/twilio-conversation-webhook")
async def twilio_conversation_webhook(request: Request, db: Session = Depends(get_db)):
    params = await _read_form(request)
    event_type = params.get("EventType")
    if event_type != MESSAGE_ADDED_EVENT:
        return {"success": True, "ignored": event_type}

    try:
        message = handle_bridge_message(
            db,
            params.get("ConversationSid", ""),
            params.get("Body", ""),
            params.get("Source"),
        )
    except ServiceError as e:
        raise http_error(e)

    return {"success": True, "message_id": str(message.id) if message else None}
