from xml.sax.saxutils import escape

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import Response

from app.config import settings
from app.dependencies import get_store, get_submission_dispatcher
from app.logging_config import get_logger, mask_address
from app.services.bot_service import ConversationBot, InboundEvent
from app.services.twilio_service import chunk_message, validate_signature

logger = get_logger("webhook")

router = APIRouter()


def build_twiml(reply_text: str) -> str:
    messages = "".join(f"<Message>{escape(chunk)}</Message>" for chunk in chunk_message(reply_text))
    return f'<?xml version="1.0" encoding="UTF-8"?><Response>{messages}</Response>'


def _public_url(request: Request, base_url: str) -> str:
    url = f"{base_url.rstrip('/')}{request.url.path}"
    if request.url.query:
        url = f"{url}?{request.url.query}"
    return url


@router.post("/webhook/whatsapp")
async def whatsapp_webhook(
    request: Request,
    store=Depends(get_store),
    dispatcher=Depends(get_submission_dispatcher),
):
    """Twilio WhatsApp inbound webhook. Replies with TwiML."""
    if not settings.webhook_base_url or not settings.twilio_auth_token:
        logger.error("WEBHOOK_BASE_URL or TWILIO_AUTH_TOKEN not configured")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Server misconfigured")

    try:
        form = await request.form()
    except Exception as e:
        logger.warning(f"Unreadable webhook form: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")
    params = {key: str(value) for key, value in form.items()}

    signature = request.headers.get("X-Twilio-Signature")
    if not validate_signature(settings.twilio_auth_token, signature, _public_url(request, settings.webhook_base_url), params):
        logger.warning("Rejected webhook with invalid signature")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid signature")

    from_address = params.get("From", "").strip()
    if not from_address:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")

    bot = ConversationBot(store, submission_dispatcher=dispatcher)
    reply = bot.handle_incoming(
        InboundEvent(
            from_address=from_address,
            body_text=params.get("Body"),
            media_count=params.get("NumMedia", "0"),
            media_url=params.get("MediaUrl0"),
        )
    )
    logger.info(f"Replied to {mask_address(from_address)}", extra={"context": {"step": reply.step}})
    return Response(content=build_twiml(reply.reply_text), media_type="text/xml")
