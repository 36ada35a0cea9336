"""
Coordinate lookup: center the map on a position and read the place it lands on.

Unlike the other strategies this one never comes back empty-handed. When no
real place id can be read, it returns a synthetic "x_y" placeholder flagged as
non-authoritative, which callers must not treat as a resolved place id.
"""
import asyncio
from typing import Optional
from urllib.parse import quote, urlencode

from loguru import logger

from place_resolver.clients import WebClient
from place_resolver.config import (
    COORDINATE_CONFIDENCE,
    MAP_SEARCH_URL,
    MAP_URL,
    SYNTHETIC_COORDINATE_CONFIDENCE,
)
from place_resolver.models import Candidate, Coordinates, SourceStrategy, is_valid_place_id, strip_markup
from place_resolver.strategies.headers import html_headers, place_ids_in

MAP_ZOOM = 17


def synthetic_coordinate_id(coordinates: Coordinates) -> str:
    return f"{coordinates.x}_{coordinates.y}"


def _center(coordinates: Coordinates) -> str:
    return f"{coordinates.x},{coordinates.y},{MAP_ZOOM},0,0,0,dh"


def centered_map_url(coordinates: Coordinates) -> str:
    return f"{MAP_URL}?{urlencode({'c': _center(coordinates)}, safe=',')}"


def centered_search_url(coordinates: Coordinates, name: str) -> str:
    base = MAP_SEARCH_URL.format(query=quote(name))
    return f"{base}?{urlencode({'c': _center(coordinates)}, safe=',')}"


class CoordinateLookup:
    name = "coordinate lookup"
    description = "Naver map centered on coordinates"

    async def _resolve(self, client: WebClient, url: str) -> Optional[str]:
        """Follow the map URL and pull a place id from where it lands."""
        try:
            resp = await client.get(url, headers=html_headers(), allow_redirects=True)
        except asyncio.TimeoutError:
            logger.debug(f"⏱️ TIMEOUT resolving {url}")
            return None
        except Exception as e:
            logger.debug(f"⚠️ ERROR resolving {url}: {e}")
            return None

        if resp.status != 200:
            logger.debug(f"Map answered HTTP {resp.status} for {url}")
            return None

        # The resolved location wins over ids merely mentioned in the page body
        for place_id in place_ids_in(resp.url) + place_ids_in(resp.text):
            if is_valid_place_id(place_id):
                return place_id
        return None

    async def attempt(self, coordinates: Coordinates, name_hint: Optional[str] = None) -> Candidate:
        """
        Resolve a place id from coordinates, falling back to a synthetic id.

        Args:
            coordinates (Coordinates): Map position of the business.
            name_hint (Optional[str]): Business name used for a second, name-scoped search.

        Returns:
            Candidate: Authoritative candidate, or a synthetic one when nothing resolves.
        """
        client = WebClient()
        hint = strip_markup(name_hint)
        logger.debug(f"▶️ Coordinate lookup at X={coordinates.x}, Y={coordinates.y}")

        place_id = await self._resolve(client, centered_map_url(coordinates))
        if place_id is None and hint:
            logger.debug(f"No place at center, retrying with name '{hint}'")
            place_id = await self._resolve(client, centered_search_url(coordinates, hint))

        if place_id is not None:
            logger.debug(f"✅ Coordinate lookup resolved place {place_id}")
            return Candidate(
                external_id=place_id,
                source_strategy=SourceStrategy.COORDINATE,
                confidence=COORDINATE_CONFIDENCE,
                display_name=hint or None,
            )

        coordinate_id = synthetic_coordinate_id(coordinates)
        logger.debug(f"⚠️ Falling back to synthetic coordinate id {coordinate_id}")
        return Candidate(
            external_id=coordinate_id,
            source_strategy=SourceStrategy.COORDINATE,
            confidence=SYNTHETIC_COORDINATE_CONFIDENCE,
            display_name=hint or None,
            synthetic=True,
        )
