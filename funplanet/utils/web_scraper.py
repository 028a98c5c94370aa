import logging
import re
from typing import List, Optional
from urllib.parse import urlparse

import requests
from bs4 import BeautifulSoup
from fastapi import HTTPException

logger = logging.getLogger(__name__)

HEADERS = {
    'User-Agent': 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8',
    'Accept-Language': 'en-US,en;q=0.5',
}

EMBED_PATTERNS = [
    re.compile(r'https://itch\.io/embed/(\d+)', re.I),
    re.compile(r'https://html-classic\.itch\.zone/html/(\d+)', re.I),
    re.compile(r'data-iframe_url="([^"]+)"', re.I),
]
PLAYER_PATTERNS = [
    re.compile(r'https://html-classic\.itch\.zone/html/[^"\'\s]+', re.I),
    re.compile(r'https://v6p9d9t4\.ssl\.hwcdn\.net/html/[^"\'\s]+', re.I),
]
HTML5_MARKERS = ('html_embed', 'html-classic.itch.zone', 'v6p9d9t4.ssl.hwcdn.net/html', 'Run game', 'game_frame')


def is_itchio_url(url: str) -> bool:
    hostname = (urlparse(url).hostname or '').lower()
    return hostname == 'itch.io' or hostname.endswith('.itch.io')


def _meta(soup: BeautifulSoup, **attrs) -> Optional[str]:
    elem = soup.find('meta', attrs=attrs)
    content = elem.get('content') if elem else None
    return content.strip() if content else None


def _find_embed_url(html: str) -> str:
    for pattern in EMBED_PATTERNS:
        match = pattern.search(html)
        if match:
            value = match.group(1)
            return value if value.startswith('http') else f"https://itch.io/embed/{value}"
    for pattern in PLAYER_PATTERNS:
        match = pattern.search(html)
        if match:
            return match.group(0)
    return ''


def _author(soup: BeautifulSoup, url: str) -> str:
    link = soup.select_one('a.user_link')
    if link and link.get_text().strip():
        return link.get_text().strip()
    match = re.match(r'https?://([^.]+)\.itch\.io', url)
    return match.group(1) if match else ''


def _tags(soup: BeautifulSoup) -> List[str]:
    tags = []
    for elem in soup.select('a.game_tag'):
        tag = elem.get_text().strip()
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def parse_itchio_html(html: str, url: str) -> dict:
    """Extract game details from an itch.io game page.

    Only HTML5 games that can be embedded are accepted.
    """
    soup = BeautifulSoup(html, 'html.parser')

    title = _meta(soup, property='og:title')
    if title:
        title = re.sub(r' by .+$', '', title).strip()
    if not title and soup.title and soup.title.string:
        title = re.sub(r'( by .+)? - itch\.io$', '', soup.title.string.strip()).strip()
    if not title:
        h1 = soup.select_one('h1.game_title')
        title = h1.get_text().strip() if h1 else ''

    description = _meta(soup, property='og:description') or _meta(soup, name='description')
    if not description:
        desc_elem = soup.select_one('div.formatted_description')
        if desc_elem:
            description = ' '.join(desc_elem.get_text(' ').split())[:500]

    thumbnail = _meta(soup, property='og:image')
    if not thumbnail:
        cover = soup.select_one('div.game_cover img')
        thumbnail = cover.get('src') if cover else None

    is_html5 = any(marker in html for marker in HTML5_MARKERS)
    embed_url = _find_embed_url(html)
    if not embed_url or embed_url == url:
        if not is_html5:
            raise HTTPException(
                status_code=400,
                detail="This game cannot be played in the browser. Only embeddable HTML5/WebGL games are supported.",
            )
        logger.warning("⚠️ Using the page URL as embed (may require iframe adjustment)")
        embed_url = url

    if not title:
        raise HTTPException(status_code=400, detail="Could not extract game title from page")

    return {
        'title': title,
        'description': description or f"Play {title} on Fun Planet!",
        'thumbnail': thumbnail,
        'embedUrl': embed_url,
        'gameUrl': url,
        'author': _author(soup, url),
        'tags': _tags(soup),
    }


def fetch_itchio_game(url: str) -> dict:
    if not is_itchio_url(url):
        raise HTTPException(status_code=400, detail="URL must be from itch.io domain")
    try:
        response = requests.get(url, headers=HEADERS, timeout=10)
        response.raise_for_status()
    except requests.RequestException as e:
        raise HTTPException(status_code=400, detail=f"Failed to fetch page: {str(e)}")
    logger.info(f"✅ Fetched {url} ({len(response.text)} chars)")
    return parse_itchio_html(response.text, url)
