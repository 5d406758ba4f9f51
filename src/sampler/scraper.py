"""
CCU scrapers.

A scraper returns the current player count for a game, or None when the page
loaded but held no readable number. Network failures propagate as
TransientFetchError so the sampler can retry them.
"""

import re
from abc import ABC, abstractmethod

import bs4
import structlog

from src.catalog.models import GameRef
from src.core.retry import HttpClient

logger = structlog.get_logger(__name__)

MAX_PLAUSIBLE_CCU = 1_000_000
DIGITS = re.compile(r"^\d+$")

# Fallbacks when the stat list is missing or renamed
FALLBACK_SELECTORS = [
    '[data-testid="game-players-count"]',
    '[data-testid="active-players"]',
    ".game-players-count",
    ".players-count",
    ".active-players",
    ".concurrent-players",
]


def parse_count(text: str | None) -> int | None:
    """Digits-only count with separators removed, within the plausible range"""
    if not text:
        return None
    cleaned = re.sub(r"[\s\u00a0,]", "", text)
    if not DIGITS.match(cleaned):
        return None
    value = int(cleaned)
    return value if 0 <= value < MAX_PLAUSIBLE_CCU else None


def extract_active_count(html: str) -> int | None:
    """Find the "Active" game stat in a game page"""
    soup = bs4.BeautifulSoup(html, "html.parser")

    for stat in soup.select("li.game-stat"):
        label = stat.select_one(".text-label")
        value = stat.select_one(".text-lead")
        if label is None or value is None:
            continue
        if label.get_text(strip=True).lower() == "active":
            count = parse_count(value.get_text(strip=True))
            if count is not None:
                return count

    for selector in FALLBACK_SELECTORS:
        element = soup.select_one(selector)
        if element is not None:
            count = parse_count(element.get_text(strip=True))
            if count is not None:
                return count

    return None


class CcuScraper(ABC):
    """Reads the current CCU of one game"""

    @abstractmethod
    def scrape_current_ccu(self, game: GameRef) -> int | None:
        """Current player count, or None when it cannot be determined

        Raises:
            TransientFetchError: on network failure
        """

    def close(self):
        pass


class RobloxPageScraper(CcuScraper):
    """Parses the public game page on roblox.com"""

    def __init__(
        self,
        client: HttpClient,
        url_template: str = "https://www.roblox.com/games/{external_id}/",
    ):
        self.client = client
        self.url_template = url_template

    def game_url(self, game: GameRef) -> str:
        return self.url_template.format(external_id=game.external_id)

    def scrape_current_ccu(self, game: GameRef) -> int | None:
        url = self.game_url(game)
        html = self.client.get_text(url)
        count = extract_active_count(html)
        if count is None:
            logger.warning("No active player count on page", game_id=game.id, url=url)
        else:
            logger.debug("Parsed active player count", game_id=game.id, ccu=count)
        return count

    def close(self):
        self.client.close()
