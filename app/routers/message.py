from fastapi import APIRouter, Depends, HTTPException

from app.dependencies import get_store, get_submission_dispatcher, require_admin
from app.schemas.message import MessageRequest, MessageResponse
from app.services.bot_service import ConversationBot, InboundEvent

router = APIRouter()


@router.post("/message", response_model=MessageResponse, dependencies=[Depends(require_admin)])
def handle_message(
    request: MessageRequest,
    store=Depends(get_store),
    dispatcher=Depends(get_submission_dispatcher),
):
    """Run one chat message through the bot on behalf of an operator. Provider traffic uses the signed webhook."""
    bot = ConversationBot(store, submission_dispatcher=dispatcher)
    try:
        reply = bot.handle_incoming(
            InboundEvent(
                from_address=request.from_address,
                body_text=request.body_text,
                media_count=request.media_count,
                media_url=request.media_url,
            )
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return MessageResponse(reply_text=reply.reply_text)
