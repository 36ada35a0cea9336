"""
Text-search lookup: scrape a web search results page for place links.

The results page for "<store name> <region>" usually embeds links of the form
.../place/<id>. Each structurally valid id is confirmed by fetching its place
page; the first one that answers 200 wins.
"""
import asyncio
import re
import time
from typing import Optional, Set, Tuple
from urllib.parse import urlencode

from loguru import logger

from place_resolver.clients import WebClient
from place_resolver.config import PLACE_URL_TEMPLATE, TEXT_SEARCH_CONFIDENCE, TEXT_SEARCH_URL
from place_resolver.models import BusinessRecord, Candidate, SourceStrategy, is_valid_place_id
from place_resolver.strategies.headers import html_headers, place_ids_in

_OG_TITLE_RE = re.compile(r'<meta[^>]*property="og:title"[^>]*content="([^"]+)"')
_OG_DESCRIPTION_RE = re.compile(r'<meta[^>]*property="og:description"[^>]*content="([^"]+)"')


def build_query(record: BusinessRecord) -> str:
    """Store name plus the coarse region (first two address tokens)."""
    region = " ".join((record.address or "").split()[:2])
    return f"{record.clean_name} {region}".strip()


def _meta(pattern: re.Pattern, html: str) -> Optional[str]:
    found = pattern.search(html)
    return found.group(1).strip() if found else None


class TextSearchLookup:
    name = "scraping"
    description = "Naver web search scraping"

    async def _validate(self, client: WebClient, place_id: str) -> Tuple[bool, Optional[str], Optional[str]]:
        """
        Fetch the place page for an id.

        Returns:
            Tuple[bool, Optional[str], Optional[str]]: (is_valid, display name, address).
        """
        url = PLACE_URL_TEMPLATE.format(place_id=place_id)
        try:
            resp = await client.get(url, headers=html_headers())
        except asyncio.TimeoutError:
            logger.debug(f"⏱️ TIMEOUT validating place {place_id}")
            return False, None, None
        except Exception as e:
            logger.debug(f"⚠️ ERROR validating place {place_id}: {e}")
            return False, None, None

        if resp.status != 200:
            logger.debug(f"❌ Place {place_id} rejected: HTTP {resp.status}")
            return False, None, None
        return True, _meta(_OG_TITLE_RE, resp.text), _meta(_OG_DESCRIPTION_RE, resp.text)

    async def attempt(self, record: BusinessRecord) -> Optional[Candidate]:
        """
        Search for the record and return the first place id that validates.

        Args:
            record (BusinessRecord): Business being resolved.

        Returns:
            Optional[Candidate]: Validated candidate, or None on any failure.
        """
        client = WebClient()
        query = build_query(record)
        url = f"{TEXT_SEARCH_URL}?{urlencode({'query': query, 'where': 'nexearch'})}"

        start = time.perf_counter()
        logger.debug(f"▶️ Text search for '{query}'")
        try:
            resp = await client.get(url, headers=html_headers())
        except asyncio.TimeoutError:
            logger.debug(f"⏱️ TIMEOUT text search for '{query}'")
            return None
        except Exception as e:
            logger.debug(f"⚠️ ERROR text search for '{query}': {e}")
            return None

        if resp.status != 200:
            logger.debug(f"⚠️ Text search for '{query}' answered HTTP {resp.status}")
            return None

        found = place_ids_in(resp.text)
        logger.debug(f"🔎 {len(found)} place/ matches in {len(resp.text)} chars: {found[:10]}")

        tried: Set[str] = set()
        for place_id in found:
            if place_id in tried:
                continue
            tried.add(place_id)
            if not is_valid_place_id(place_id):
                logger.debug(f"Skipping short id {place_id}")
                continue

            ok, display_name, address = await self._validate(client, place_id)
            if ok:
                duration = time.perf_counter() - start
                logger.debug(f"✅ Text search validated place {place_id} in {duration:.2f}s")
                return Candidate(
                    external_id=place_id,
                    source_strategy=SourceStrategy.TEXT_SEARCH,
                    confidence=TEXT_SEARCH_CONFIDENCE,
                    display_name=display_name or record.clean_name,
                    address=address or record.address,
                )

        logger.debug(f"No valid place id for '{query}'")
        return None
