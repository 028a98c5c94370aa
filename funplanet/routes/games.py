from typing import Dict

from fastapi import APIRouter, Depends, HTTPException

from funplanet.models.schemas import ItchioFetchRequest
from funplanet.utils.auth import get_current_user
from funplanet.utils.web_scraper import fetch_itchio_game

router = APIRouter()


@router.post("/fetch-itchio-game")
async def fetch_itchio(body: ItchioFetchRequest, user: Dict = Depends(get_current_user)):
    if not body.url:
        raise HTTPException(status_code=400, detail="URL is required")
    return {"success": True, "data": fetch_itchio_game(body.url)}
