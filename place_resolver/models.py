"""
Typed data models for place-identity resolution.
All data structures used throughout the codebase should be defined here.
"""
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from place_resolver.config import MIN_PLACE_ID_LENGTH, PLACE_URL_TEMPLATE, REVIEW_URL_TEMPLATE

_MARKUP_RE = re.compile(r"<[^>]*>")

CoordinateValue = Union[float, int, str]


class InvalidBusinessRecordError(ValueError):
    """Raised before any strategy runs when a record cannot be resolved at all."""


class SourceStrategy(str, Enum):
    TEXT_SEARCH = "text-search"
    AGGREGATED_API = "aggregated-api"
    COORDINATE = "coordinate"


def strip_markup(text: Optional[str]) -> str:
    """Remove HTML tags such as the <b> highlights search APIs wrap around matches."""
    return _MARKUP_RE.sub("", text or "").strip()


def is_valid_place_id(value: Any) -> bool:
    """A place id is a numeric string of at least MIN_PLACE_ID_LENGTH digits."""
    return isinstance(value, str) and value.isdigit() and len(value) >= MIN_PLACE_ID_LENGTH


@dataclass(frozen=True)
class Coordinates:
    """Map position. Values are kept as given so derived ids echo the input text."""
    x: CoordinateValue  # longitude-like
    y: CoordinateValue  # latitude-like


@dataclass(frozen=True)
class BusinessRecord:
    """Input business record handed over by the upstream store search."""
    name: str
    address: Optional[str] = None
    road_address: Optional[str] = None
    district: Optional[str] = None
    coordinates: Optional[Coordinates] = None

    @property
    def clean_name(self) -> str:
        return strip_markup(self.name)

    @classmethod
    def from_search_item(cls, item: Dict[str, Any]) -> "BusinessRecord":
        """
        Build a record from a local-search item (title/address/roadAddress/mapx/mapy).

        Args:
            item (Dict[str, Any]): Raw item as returned by the store search step.

        Returns:
            BusinessRecord: Record ready for resolution.
        """
        mapx, mapy = item.get("mapx"), item.get("mapy")
        coordinates = Coordinates(x=mapx, y=mapy) if mapx not in (None, "") and mapy not in (None, "") else None
        return cls(
            name=item.get("title") or item.get("name") or "",
            address=item.get("address") or None,
            road_address=item.get("roadAddress") or None,
            district=item.get("district") or None,
            coordinates=coordinates,
        )


@dataclass(frozen=True)
class Candidate:
    """Unconfirmed identifier produced by a strategy."""
    external_id: str
    source_strategy: SourceStrategy
    confidence: float
    display_name: Optional[str] = None
    address: Optional[str] = None
    road_address: Optional[str] = None
    synthetic: bool = False  # coordinate-derived placeholder, never authoritative


@dataclass(frozen=True)
class StepRecord:
    """Provenance for one pipeline transition."""
    step_id: str
    strategy_name: str
    succeeded: bool
    external_id: Optional[str] = None
    error: Optional[str] = None
    manual_instructions: Optional[Tuple[str, ...]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "step": self.step_id,
            "method": self.strategy_name,
            "success": self.succeeded,
        }
        if self.external_id is not None:
            data["placeId"] = self.external_id
        if self.error is not None:
            data["error"] = self.error
        if self.manual_instructions is not None:
            data["manualSteps"] = list(self.manual_instructions)
        return data


@dataclass(frozen=True)
class ResolutionResult:
    """Final outcome of one resolution call."""
    external_id: Optional[str]
    method: str
    confidence: float
    steps: Tuple[StepRecord, ...]
    duration_ms: int
    timestamp: str
    manual_instructions: Tuple[str, ...] = field(default_factory=tuple)
    coordinate_id: Optional[str] = None
    success_rate: Optional[float] = None  # static prior of the step that produced the result
    display_name: Optional[str] = None
    address: Optional[str] = None

    def __post_init__(self):
        resolved = self.external_id is not None and self.method != "manual"
        manual = self.external_id is None and self.method == "manual" and len(self.manual_instructions) > 0
        if resolved == manual:
            raise ValueError(
                f"Inconsistent resolution result: external_id={self.external_id!r}, method={self.method!r}"
            )
        if not self.steps:
            raise ValueError("Resolution result must carry at least one step")

    @property
    def place_url(self) -> Optional[str]:
        if self.external_id is None:
            return None
        return PLACE_URL_TEMPLATE.format(place_id=self.external_id)

    @property
    def review_url(self) -> Optional[str]:
        if self.external_id is None:
            return None
        return REVIEW_URL_TEMPLATE.format(place_id=self.external_id)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready view for API and dashboard collaborators."""
        data: Dict[str, Any] = {
            "placeId": self.external_id,
            "placeUrl": self.place_url,
            "reviewUrl": self.review_url,
            "method": self.method,
            "confidence": self.confidence,
            "extractionSteps": [step.to_dict() for step in self.steps],
            "duration": self.duration_ms,
            "extractedAt": self.timestamp,
        }
        if self.success_rate is not None:
            data["successRate"] = self.success_rate
        if self.display_name is not None:
            data["storeName"] = self.display_name
        if self.address is not None:
            data["address"] = self.address
        if self.manual_instructions:
            data["manualSteps"] = list(self.manual_instructions)
        if self.coordinate_id is not None:
            data["coordinateId"] = self.coordinate_id
        return data
