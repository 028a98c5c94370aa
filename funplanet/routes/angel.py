import logging
from typing import Dict

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from funplanet.models.schemas import AngelChatRequest, GameEvaluationRequest, GameSuggestionsRequest
from funplanet.services import angel
from funplanet.services.ledger import RewardLedger
from funplanet.utils.ai_gateway import AIGateway
from funplanet.utils.auth import get_current_user
from funplanet.utils.dependencies import get_ai_gateway, get_ledger

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/angel-ai-chat")
async def angel_ai_chat(body: AngelChatRequest, gateway: AIGateway = Depends(get_ai_gateway)):
    if body.generateImageRequest:
        logger.info(f"🎨 Image request: {body.generateImageRequest}")
        image_url = gateway.generate_image(body.generateImageRequest)
        if image_url:
            return {"type": "image", "imageUrl": image_url, "message": "Angel finished your drawing! 🎨✨"}
        return {"type": "error", "message": "Oops! Angel couldn't draw that one. Try again! 🎨"}

    logger.info(f"🌟 Angel chat - user: {body.userId}, messages: {len(body.messages)}")
    chunks = gateway.stream_chat(angel.build_chat_messages([m.model_dump() for m in body.messages]))
    return StreamingResponse(
        chunks,
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@router.post("/angel-evaluate-game")
async def angel_evaluate_game(
    body: GameEvaluationRequest,
    user: Dict = Depends(get_current_user),
    ledger: RewardLedger = Depends(get_ledger),
    gateway: AIGateway = Depends(get_ai_gateway),
):
    return angel.evaluate_game(
        ledger, gateway, body.game_id, body.title, body.description, body.categories, body.thumbnail_url,
    )


@router.post("/ai-game-suggestions")
async def ai_game_suggestions(
    body: GameSuggestionsRequest,
    ledger: RewardLedger = Depends(get_ledger),
    gateway: AIGateway = Depends(get_ai_gateway),
):
    if not body.userId:
        raise HTTPException(status_code=400, detail="userId is required")
    return angel.suggest_games(ledger, gateway, body.userId)


@router.post("/generate-daily-quiz")
async def generate_daily_quiz(gateway: AIGateway = Depends(get_ai_gateway)):
    return angel.generate_daily_quiz(gateway)
