import random
import re
from typing import Dict, List, Optional

from place_resolver.config import USER_AGENTS

# Identifier-in-path pattern shared by every Naver surface
PLACE_PATH_RE = re.compile(r"place/(\d+)")

_HTML_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
_LANGUAGE = "ko-KR,ko;q=0.9,en;q=0.8"


def random_user_agent() -> str:
    return random.choice(USER_AGENTS)


def html_headers() -> Dict[str, str]:
    """Browser-like headers with a User-Agent drawn from the rotation pool."""
    return {
        "User-Agent": random_user_agent(),
        "Accept": _HTML_ACCEPT,
        "Accept-Language": _LANGUAGE,
        "Upgrade-Insecure-Requests": "1",
    }


def json_headers(referer: str) -> Dict[str, str]:
    return {
        "User-Agent": random_user_agent(),
        "Accept": "application/json",
        "Accept-Language": _LANGUAGE,
        "Referer": referer + "/",
        "Origin": referer,
    }


def place_ids_in(text: Optional[str]) -> List[str]:
    """All numeric ids found after 'place/' in document order."""
    return PLACE_PATH_RE.findall(text or "")
