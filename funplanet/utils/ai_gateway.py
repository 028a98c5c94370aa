import logging
from typing import Any, Dict, Iterator, List, Optional

import requests
from fastapi import HTTPException

from funplanet.config.settings import AI_CHAT_MODEL, AI_GATEWAY_URL, AI_IMAGE_MODEL

logger = logging.getLogger(__name__)

RATE_LIMIT_MESSAGE = "Rate limit exceeded, please try again later."
CREDITS_MESSAGE = "AI credits exhausted. Please add funds."


class AIGateway:
    """OpenAI-compatible chat completions gateway."""

    def __init__(self, api_key: str, url: str = AI_GATEWAY_URL, timeout: int = 60):
        self.api_key = api_key
        self.url = url
        self.timeout = timeout

    def _post(self, payload: Dict[str, Any], stream: bool = False) -> requests.Response:
        response = requests.post(
            self.url,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            json=payload,
            stream=stream,
            timeout=self.timeout,
        )
        if response.status_code == 429:
            raise HTTPException(status_code=429, detail=RATE_LIMIT_MESSAGE)
        if response.status_code == 402:
            raise HTTPException(status_code=402, detail=CREDITS_MESSAGE)
        if not response.ok:
            logger.error(f"❌ AI gateway error: {response.status_code} {response.text[:500]}")
            raise HTTPException(status_code=502, detail=f"AI gateway error: {response.status_code}")
        return response

    def complete(self, messages: List[Dict[str, Any]], model: str = AI_CHAT_MODEL, **options) -> Dict[str, Any]:
        return self._post({"model": model, "messages": messages, **options}).json()

    def stream_chat(self, messages: List[Dict[str, Any]], model: str = AI_CHAT_MODEL, max_tokens: int = 1000) -> Iterator[bytes]:
        """Start a streaming completion and yield the raw SSE bytes."""
        response = self._post(
            {"model": model, "messages": messages, "stream": True, "max_tokens": max_tokens},
            stream=True,
        )
        return response.iter_content(chunk_size=None)

    def generate_image(self, prompt: str) -> Optional[str]:
        data = self.complete(
            [{
                "role": "user",
                "content": (
                    f"Generate a cute, child-friendly, colorful cartoon image: {prompt}. "
                    "Make it safe and appropriate for children ages 6-14. "
                    "Use bright, cheerful colors and kawaii style."
                ),
            }],
            model=AI_IMAGE_MODEL,
            modalities=["image", "text"],
        )
        images = ((data.get("choices") or [{}])[0].get("message") or {}).get("images") or []
        if not images:
            return None
        return (images[0].get("image_url") or {}).get("url")
