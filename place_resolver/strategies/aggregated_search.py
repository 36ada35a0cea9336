import asyncio
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from loguru import logger

from place_resolver.clients import WebClient
from place_resolver.config import AGGREGATED_SEARCH_CONFIDENCE, AGGREGATED_SEARCH_URL, MAP_HOME_URL
from place_resolver.matchers.place_matcher import match
from place_resolver.models import (
    BusinessRecord,
    Candidate,
    SourceStrategy,
    is_valid_place_id,
    strip_markup,
)
from place_resolver.strategies.headers import json_headers


def build_query_variants(record: BusinessRecord) -> List[str]:
    """
    Queries in priority order: name, name + district, road address or address.
    Empty and repeated variants are dropped.
    """
    name = record.clean_name
    variants = [
        name,
        f"{name} {record.district or ''}".strip(),
        (record.road_address or record.address or "").strip(),
    ]
    ordered: List[str] = []
    for v in variants:
        if v and v not in ordered:
            ordered.append(v)
    return ordered


def _optional_text(value: Any) -> Optional[str]:
    return str(value) if value not in (None, "") else None


def _to_candidates(places: List[Any]) -> List[Candidate]:
    candidates = []
    for place in places:
        if not isinstance(place, dict):
            continue
        place_id = str(place.get("id") or "")
        if not is_valid_place_id(place_id):
            continue
        candidates.append(Candidate(
            external_id=place_id,
            source_strategy=SourceStrategy.AGGREGATED_API,
            confidence=AGGREGATED_SEARCH_CONFIDENCE,
            display_name=strip_markup(_optional_text(place.get("name"))),
            address=_optional_text(place.get("address")),
            road_address=_optional_text(place.get("roadAddress")),
        ))
    return candidates


class AggregatedSearchAPI:
    name = "allSearch API"
    description = "Naver map allSearch API"

    async def _search(self, client: WebClient, query: str) -> List[Dict[str, Any]]:
        url = f"{AGGREGATED_SEARCH_URL}?{urlencode({'query': query, 'type': 'place', 'page': 1, 'display': 10})}"
        resp = await client.get(url, headers=json_headers(MAP_HOME_URL))
        if resp.status != 200:
            raise Exception(f"allSearch answered HTTP {resp.status}")
        data = resp.json() or {}
        places = ((data.get("result") or {}).get("place") or {}).get("list") or []
        return places if isinstance(places, list) else []

    async def attempt(self, record: BusinessRecord) -> Optional[Candidate]:
        """
        Query the structured search API with each variant and match its results.

        Args:
            record (BusinessRecord): Business being resolved.

        Returns:
            Optional[Candidate]: First matched candidate, or None.
        """
        client = WebClient()
        for query in build_query_variants(record):
            logger.debug(f"▶️ allSearch for '{query}'")
            try:
                places = await self._search(client, query)
                matched = match(_to_candidates(places), record)
            except asyncio.TimeoutError:
                logger.debug(f"⏱️ TIMEOUT allSearch for '{query}', trying next variant")
                continue
            except Exception as e:
                logger.debug(f"⚠️ ERROR allSearch for '{query}': {e}, trying next variant")
                continue

            if matched:
                logger.debug(f"✅ allSearch matched place {matched.external_id} ({matched.display_name})")
                return matched

        logger.debug(f"No allSearch match for '{record.clean_name}'")
        return None
