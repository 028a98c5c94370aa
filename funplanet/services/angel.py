import base64
import json
import logging
import re
from typing import Any, Dict, List, Optional

import requests
from fastapi import HTTPException

from funplanet.config.settings import AI_CHAT_MODEL, AI_REVIEW_MODEL_WITH_IMAGE
from funplanet.services.ledger import RewardLedger, utc_now
from funplanet.utils.ai_gateway import AIGateway
from funplanet.utils.errors import ApiError

logger = logging.getLogger(__name__)

MAX_THUMBNAIL_BYTES = 4 * 1024 * 1024

ANGEL_SYSTEM_PROMPT = """You are Angel, the friendly AI companion of FUN Planet, a gaming platform for kids.

Personality:
- Cheerful, warm and encouraging; use simple words and emojis 🌟💫✨🎮🌈
- Celebrate curiosity, learning and creativity

Safety rules:
1. Never mention violence, weapons or adult content
2. Never ask for or encourage sharing personal information
3. Gently redirect unsuitable topics
4. Suggest a break when the user seems tired

Image requests:
- When asked to draw something, answer briefly and add [GENERATE_IMAGE: detailed English description]
- Images must always be cute, safe and child-friendly

You can explain science, nature and space, suggest FUN Planet games, tell stories and riddles, and help with homework."""

EVALUATOR_PROMPT = """You are Angel AI, the game reviewer of FUN Planet.
Your mission is to protect children from unsuitable content and rate the educational value of games.

Rate the game on:
1. Violence (0-10): 0-2 none, 3-4 mild cartoon, 5-6 moderate cartoon, 7-8 concerning (blood, realistic weapons), 9-10 unsuitable for children
2. Lootbox / gambling mechanics and pressure to spend money
3. Educational value (0-10)
4. Recommended age: "3+", "6+", "9+", "12+" or "Not suitable"
5. Thumbnail analysis (if provided): visual violence, suggestive imagery, disturbing symbols, inappropriate text, overall quality

Answer through the evaluate_game function only."""

EVALUATE_GAME_TOOL = {
    "type": "function",
    "function": {
        "name": "evaluate_game",
        "description": "Evaluate a game and return a detailed review",
        "parameters": {
            "type": "object",
            "properties": {
                "overall_score": {"type": "number", "description": "Overall score 0-100"},
                "is_safe_for_kids": {"type": "boolean"},
                "recommended_age": {"type": "string", "enum": ["3+", "6+", "9+", "12+", "Not suitable"]},
                "violence": {
                    "type": "object",
                    "properties": {
                        "score": {"type": "number", "description": "Violence score 0-10"},
                        "types": {"type": "array", "items": {"type": "string"}},
                        "details": {"type": "string"},
                    },
                    "required": ["score", "types", "details"],
                },
                "monetization": {
                    "type": "object",
                    "properties": {
                        "has_lootbox": {"type": "boolean"},
                        "has_gambling": {"type": "boolean"},
                        "concerns": {"type": "array", "items": {"type": "string"}},
                        "details": {"type": "string"},
                    },
                    "required": ["has_lootbox", "has_gambling", "concerns", "details"],
                },
                "educational": {
                    "type": "object",
                    "properties": {
                        "score": {"type": "number", "description": "Educational score 0-10"},
                        "categories": {"type": "array", "items": {"type": "string"}},
                        "learning_outcomes": {"type": "array", "items": {"type": "string"}},
                        "details": {"type": "string"},
                    },
                    "required": ["score", "categories", "learning_outcomes", "details"],
                },
                "thumbnail_analysis": {
                    "type": "object",
                    "properties": {
                        "is_appropriate": {"type": "boolean"},
                        "concerns": {"type": "array", "items": {"type": "string"}},
                        "detected_elements": {"type": "array", "items": {"type": "string"}},
                        "quality_score": {"type": "number", "description": "Image quality 1-10"},
                        "details": {"type": "string"},
                    },
                    "required": ["is_appropriate", "concerns", "detected_elements", "quality_score", "details"],
                },
                "themes": {"type": "array", "items": {"type": "string"}},
                "positive_aspects": {"type": "array", "items": {"type": "string"}},
                "concerns": {"type": "array", "items": {"type": "string"}},
                "summary": {"type": "string"},
                "confidence": {"type": "number", "description": "Confidence 0-1"},
            },
            "required": [
                "overall_score", "is_safe_for_kids", "recommended_age", "violence", "monetization",
                "educational", "themes", "positive_aspects", "concerns", "summary", "confidence",
            ],
        },
    },
}


def _clamp(value: Any, low: float, high: float) -> float:
    return min(high, max(low, float(value or 0)))


def build_chat_messages(messages: List[Dict[str, str]]) -> List[Dict[str, str]]:
    return [{"role": "system", "content": ANGEL_SYSTEM_PROMPT}] + [
        {"role": m["role"], "content": m["content"]} for m in messages
    ]


def fetch_thumbnail_part(thumbnail_url: str) -> Optional[Dict[str, Any]]:
    """Download a thumbnail as an inline image part; None when unavailable or too large."""
    try:
        response = requests.get(thumbnail_url, timeout=10)
    except requests.RequestException as e:
        logger.warning(f"⚠️ Failed to fetch thumbnail {thumbnail_url}: {str(e)}")
        return None
    if not response.ok:
        return None
    content = response.content
    if len(content) >= MAX_THUMBNAIL_BYTES:
        logger.info(f"Thumbnail too large for vision analysis: {len(content)} bytes")
        return None
    ext = thumbnail_url.lower().split('?')[0].rsplit('.', 1)[-1]
    mime_type = {"png": "image/png", "gif": "image/gif", "webp": "image/webp"}.get(ext, "image/jpeg")
    encoded = base64.b64encode(content).decode()
    return {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{encoded}"}}


def auto_reject_reasons(evaluation: Dict[str, Any]) -> List[str]:
    reasons = []
    violence = evaluation.get("violence") or {}
    monetization = evaluation.get("monetization") or {}
    thumbnail = evaluation.get("thumbnail_analysis") or {}
    violence_score = violence.get("score") or 0
    if violence_score > 7:
        reasons.append(f"Violence level too high ({violence_score}/10): {violence.get('details') or 'violent content'}")
    if monetization.get("has_gambling"):
        reasons.append(f"Gambling mechanics detected: {monetization.get('details') or 'gambling'}")
    if thumbnail.get("is_appropriate") is False:
        reasons.append(f"Inappropriate thumbnail: {thumbnail.get('details') or 'unsuitable image'}")
    if evaluation.get("recommended_age") == "Not suitable":
        reasons.append(f"Not suitable for FUN Planet: {evaluation.get('summary') or ''}")
    return reasons


def review_record(game_id: str, evaluation: Dict[str, Any], reasons: List[str], model: str, raw: Dict[str, Any]) -> Dict[str, Any]:
    violence = evaluation.get("violence") or {}
    monetization = evaluation.get("monetization") or {}
    educational = evaluation.get("educational") or {}
    thumbnail = evaluation.get("thumbnail_analysis") or {}
    now = utc_now().isoformat()
    return {
        "game_id": game_id,
        "overall_score": _clamp(evaluation.get("overall_score"), 0, 100),
        "is_safe_for_kids": evaluation.get("is_safe_for_kids"),
        "recommended_age": evaluation.get("recommended_age"),
        "violence_score": _clamp(violence.get("score"), 0, 10),
        "violence_types": violence.get("types") or [],
        "violence_details": violence.get("details") or "",
        "has_lootbox": bool(monetization.get("has_lootbox")),
        "has_gambling_mechanics": bool(monetization.get("has_gambling")),
        "monetization_concerns": monetization.get("concerns") or [],
        "monetization_details": monetization.get("details") or "",
        "educational_score": _clamp(educational.get("score"), 0, 10),
        "educational_categories": educational.get("categories") or [],
        "learning_outcomes": educational.get("learning_outcomes") or [],
        "educational_details": educational.get("details") or "",
        "thumbnail_is_appropriate": thumbnail.get("is_appropriate", True),
        "thumbnail_concerns": thumbnail.get("concerns") or [],
        "thumbnail_detected_elements": thumbnail.get("detected_elements") or [],
        "thumbnail_quality_score": thumbnail.get("quality_score"),
        "thumbnail_details": thumbnail.get("details") or "",
        "auto_rejected": bool(reasons),
        "auto_reject_reasons": reasons,
        "detected_themes": evaluation.get("themes") or [],
        "positive_aspects": evaluation.get("positive_aspects") or [],
        "concerns": evaluation.get("concerns") or [],
        "ai_model": model,
        "confidence_score": evaluation.get("confidence") or 0.8,
        "review_summary": evaluation.get("summary") or "",
        "full_ai_response": raw,
        "reviewed_at": now,
        "updated_at": now,
    }


def evaluate_game(
    ledger: RewardLedger,
    gateway: AIGateway,
    game_id: str,
    title: str,
    description: Optional[str] = None,
    categories: Optional[List[str]] = None,
    thumbnail_url: Optional[str] = None,
) -> Dict[str, Any]:
    game_info = (
        "GAME TO EVALUATE:\n"
        f"- Title: {title}\n"
        f"- Description: {description or 'No description'}\n"
        f"- Categories: {', '.join(categories or []) or 'Unknown'}\n"
        f"- Has thumbnail: {'Yes' if thumbnail_url else 'No'}\n"
    )
    user_content: List[Dict[str, Any]] = [{"type": "text", "text": game_info}]
    image_part = fetch_thumbnail_part(thumbnail_url) if thumbnail_url else None
    if image_part:
        user_content.append(image_part)
    model = AI_REVIEW_MODEL_WITH_IMAGE if image_part else AI_CHAT_MODEL
    logger.info(f"[Angel AI] Evaluating {title} ({game_id}) with {model}")

    raw = gateway.complete(
        [{"role": "system", "content": EVALUATOR_PROMPT}, {"role": "user", "content": user_content}],
        model=model,
        tools=[EVALUATE_GAME_TOOL],
        tool_choice={"type": "function", "function": {"name": "evaluate_game"}},
    )
    tool_calls = ((raw.get("choices") or [{}])[0].get("message") or {}).get("tool_calls") or []
    if not tool_calls or tool_calls[0].get("function", {}).get("name") != "evaluate_game":
        raise HTTPException(status_code=500, detail="AI response format error")
    try:
        evaluation = json.loads(tool_calls[0]["function"]["arguments"])
    except (KeyError, ValueError):
        raise HTTPException(status_code=500, detail="AI response format error")

    reasons = auto_reject_reasons(evaluation)
    review = ledger.upsert_ai_review(review_record(game_id, evaluation, reasons, model, raw))

    if reasons:
        note = "[🤖 Auto-Rejected by Angel AI]\n\n" + "\n\n".join(reasons)
        ledger.reject_uploaded_game(game_id, note)
        game = ledger.get_uploaded_game(game_id)
        if game and game.get("user_id"):
            ledger.notify_user(
                game["user_id"],
                "game_auto_rejected",
                "🤖 Game auto-rejected",
                f'"{game.get("title")}" was rejected by Angel AI: {reasons[0][:100]}...',
                {"game_id": game_id, "game_title": game.get("title"), "reasons": reasons},
            )
        logger.info(f"[Angel AI] Game {game_id} auto-rejected")

    return {"success": True, "review": review, "auto_rejected": bool(reasons), "auto_reject_reasons": reasons}


def suggest_games(ledger: RewardLedger, gateway: AIGateway, user_id: str) -> Dict[str, Any]:
    progress = ledger.get_game_progress(user_id)
    recent_plays = ledger.get_recent_plays(user_id)
    all_games = ledger.list_active_games()

    played_ids = {play["game_id"] for play in recent_plays}
    games_by_id = {game["id"]: game for game in all_games}
    played_games = [g for g in all_games if g["id"] in played_ids]
    unplayed_games = [g for g in all_games if g["id"] not in played_ids]

    progress_summary = ", ".join(
        f"{games_by_id.get(p['game_id'], {}).get('title', 'Unknown')}: "
        f"Level {p.get('highest_level_completed')}, {p.get('total_stars')} stars"
        for p in progress
    ) or "No progress yet"
    played_genres = list(dict.fromkeys(g.get("genre") for g in played_games if g.get("genre")))

    catalogue = "\n".join(
        f"- {g['title']} ({g.get('genre')}, {g.get('difficulty')}): {(g.get('description') or '')[:50]}..."
        for g in unplayed_games[:15]
    )
    system_prompt = (
        "You are a friendly AI assistant for Fun Planet, a kid-friendly gaming platform.\n"
        "Suggest games that help children learn, be creative and have fun. Match their interests "
        "and skill level, encourage new genres, keep it short and use simple language with emojis.\n\n"
        f"Available games to suggest from:\n{catalogue}"
    )
    user_prompt = (
        "Based on this player's activity, suggest 3-5 games they should try next:\n\n"
        f"Favorite genres: {', '.join(played_genres) or 'Unknown'}\n"
        f"Recent progress: {progress_summary}\n"
        f"Games played: {len(played_games)}\n\n"
        "Please give a brief reason why each game would be great for them."
    )
    data = gateway.complete(
        [{"role": "system", "content": system_prompt}, {"role": "user", "content": user_prompt}],
        max_tokens=500,
        temperature=0.7,
    )
    suggestions = ((data.get("choices") or [{}])[0].get("message") or {}).get("content") or "No suggestions available."
    return {
        "suggestions": suggestions,
        "suggestedGames": [
            {k: g.get(k) for k in ("id", "title", "genre", "difficulty", "description")}
            for g in unplayed_games[:5]
        ],
        "playerStats": {
            "gamesPlayed": len(played_games),
            "favoriteGenres": played_genres,
            "totalProgress": len(progress),
        },
    }


QUIZ_SYSTEM_PROMPT = "You create educational quiz questions for children. Always answer with valid JSON."

QUIZ_PROMPT = """Create 5 varied multiple-choice questions for children aged 8-12, one per category:
1. math - arithmetic, shapes, logic
2. science - nature, animals, plants, basic physics
3. language - spelling, grammar, vocabulary
4. english - simple words and phrases
5. fun - general knowledge and riddles

Return a JSON array:
[
  {
    "id": "1",
    "question": "A clear, child-friendly question",
    "options": ["A. Answer 1", "B. Answer 2", "C. Answer 3", "D. Answer 4"],
    "correctIndex": 0,
    "category": "math",
    "explanation": "A short explanation of why the answer is right"
  }
]

Keep questions fun and moderately difficult, explanations easy to follow, and correctIndex between 0 and 3."""

DEFAULT_QUIZ_QUESTIONS = [
    {
        "id": "1",
        "question": "8 + 5 = ?",
        "options": ["A. 12", "B. 13", "C. 14", "D. 15"],
        "correctIndex": 1,
        "category": "math",
        "explanation": "8 + 5 = 13: first 8 + 2 = 10, then 10 + 3 = 13.",
    },
    {
        "id": "2",
        "question": "Which of these animals is a mammal?",
        "options": ["A. Whale", "B. Shark", "C. Carp", "D. Seahorse"],
        "correctIndex": 0,
        "category": "science",
        "explanation": "Whales live in water but breathe with lungs and feed their babies milk.",
    },
    {
        "id": "3",
        "question": "Which word is spelled correctly?",
        "options": ["A. Frend", "B. Freind", "C. Friend", "D. Friand"],
        "correctIndex": 2,
        "category": "language",
        "explanation": "'Friend' is spelled with 'ie': i before e.",
    },
    {
        "id": "4",
        "question": "What do you say when someone gives you a present?",
        "options": ["A. Goodbye", "B. Sorry", "C. Thank you", "D. Good night"],
        "correctIndex": 2,
        "category": "english",
        "explanation": "We say 'Thank you' to show we are grateful.",
    },
    {
        "id": "5",
        "question": "Which fruit is spiky outside but sweet inside?",
        "options": ["A. Apple", "B. Orange", "C. Durian", "D. Banana"],
        "correctIndex": 2,
        "category": "fun",
        "explanation": "Durian has a shell full of sharp spikes and sweet flesh inside.",
    },
]

_JSON_ARRAY = re.compile(r"\[[\s\S]*\]")


def _is_quiz_question(item: Any) -> bool:
    if not isinstance(item, dict) or not item.get("question"):
        return False
    options = item.get("options")
    index = item.get("correctIndex")
    return (
        isinstance(options, list)
        and len(options) == 4
        and isinstance(index, int)
        and not isinstance(index, bool)
        and 0 <= index < 4
    )


def parse_quiz_questions(content: str) -> Optional[List[Dict[str, Any]]]:
    """Pull the question array out of a model reply; None if nothing usable."""
    match = _JSON_ARRAY.search(content or "")
    if not match:
        return None
    try:
        items = json.loads(match.group(0))
    except ValueError:
        return None
    if not isinstance(items, list):
        return None
    questions = [item for item in items if _is_quiz_question(item)]
    return questions or None


def generate_daily_quiz(gateway: AIGateway) -> Dict[str, Any]:
    logger.info("🎯 Generating daily quiz questions")
    try:
        data = gateway.complete(
            [{"role": "system", "content": QUIZ_SYSTEM_PROMPT}, {"role": "user", "content": QUIZ_PROMPT}],
            max_tokens=2000,
        )
    except HTTPException as e:
        if e.status_code == 429:
            raise
        logger.error(f"❌ Quiz generation failed: {e.detail}")
        raise ApiError(500, str(e.detail), {"questions": DEFAULT_QUIZ_QUESTIONS})
    except requests.RequestException as e:
        logger.error(f"❌ Quiz generation failed: {str(e)}")
        raise ApiError(500, "AI gateway unreachable", {"questions": DEFAULT_QUIZ_QUESTIONS})

    content = ((data.get("choices") or [{}])[0].get("message") or {}).get("content") or ""
    questions = parse_quiz_questions(content)
    if questions is None:
        logger.warning("⚠️ Quiz reply had no usable questions, serving defaults")
        return {"questions": DEFAULT_QUIZ_QUESTIONS}
    logger.info(f"✅ Generated {len(questions)} quiz questions")
    return {"questions": questions}
