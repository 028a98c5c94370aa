from unittest.mock import MagicMock

import pytest
import requests
from fastapi import HTTPException

from funplanet.utils import web_scraper
from funplanet.utils.web_scraper import fetch_itchio_game, is_itchio_url, parse_itchio_html

GAME_URL = "https://pixelfox.itch.io/star-hop"

GAME_PAGE = """
<html>
<head>
  <title>Star Hop by pixelfox - itch.io</title>
  <meta property="og:title" content="Star Hop by pixelfox">
  <meta property="og:description" content="Hop between stars and collect gems.">
  <meta property="og:image" content="https://img.itch.zone/star-hop.png">
</head>
<body>
  <div class="game_frame" data-iframe_url="https://html-classic.itch.zone/html/123/index.html"></div>
  <a class="user_link" href="https://pixelfox.itch.io">pixelfox</a>
  <a class="game_tag">Platformer</a>
  <a class="game_tag">Cute</a>
  <a class="game_tag">Platformer</a>
</body>
</html>
"""

DOWNLOAD_ONLY_PAGE = """
<html><head><meta property="og:title" content="Big Sim"></head>
<body><a class="button">Download</a></body></html>
"""


class TestParseItchioHtml:
    def test_html5_game(self):
        data = parse_itchio_html(GAME_PAGE, GAME_URL)

        assert data["title"] == "Star Hop"
        assert data["description"] == "Hop between stars and collect gems."
        assert data["thumbnail"] == "https://img.itch.zone/star-hop.png"
        assert data["embedUrl"] == "https://itch.io/embed/123"
        assert data["author"] == "pixelfox"
        assert data["tags"] == ["Platformer", "Cute"]
        assert data["gameUrl"] == GAME_URL

    def test_description_fallback(self):
        page = GAME_PAGE.replace('<meta property="og:description" content="Hop between stars and collect gems.">', "")

        assert parse_itchio_html(page, GAME_URL)["description"] == "Play Star Hop on Fun Planet!"

    def test_download_only_game_rejected(self):
        with pytest.raises(HTTPException) as exc_info:
            parse_itchio_html(DOWNLOAD_ONLY_PAGE, "https://studio.itch.io/big-sim")

        assert exc_info.value.status_code == 400


class TestFetchItchioGame:
    @pytest.mark.parametrize("url,expected", [
        ("https://pixelfox.itch.io/star-hop", True),
        ("https://itch.io/embed/123", True),
        ("https://itch.io.evil.com/game", False),
        ("https://example.com/game", False),
    ])
    def test_domain_check(self, url, expected):
        assert is_itchio_url(url) is expected

    def test_other_domains_are_refused(self):
        with pytest.raises(HTTPException) as exc_info:
            fetch_itchio_game("https://example.com/game")

        assert exc_info.value.detail == "URL must be from itch.io domain"

    def test_fetch_failure(self, monkeypatch):
        monkeypatch.setattr(web_scraper.requests, "get", MagicMock(side_effect=requests.ConnectionError("down")))

        with pytest.raises(HTTPException) as exc_info:
            fetch_itchio_game(GAME_URL)

        assert exc_info.value.status_code == 400
        assert exc_info.value.detail.startswith("Failed to fetch page")

    def test_route(self, client, monkeypatch):
        response = MagicMock(text=GAME_PAGE)
        monkeypatch.setattr(web_scraper.requests, "get", MagicMock(return_value=response))

        result = client.post("/fetch-itchio-game", json={"url": GAME_URL})

        assert result.status_code == 200
        assert result.json()["data"]["title"] == "Star Hop"
