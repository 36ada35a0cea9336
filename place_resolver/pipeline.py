"""
Resolution pipeline: try each place-id strategy in order, stop at the first hit.

    PENDING -> TRYING_TEXT_SEARCH -> TRYING_AGGREGATED_API -> MANUAL_FALLBACK
                      |                       |
                      +-------> RESOLVED <----+

Each automated strategy runs under the fixed-delay retry wrapper. Every
transition records one StepRecord, so a result always explains how it was
reached. When nothing resolves, the manual fallback returns instructions for
finding the id by hand; that is a normal result, not an error.
"""
import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from loguru import logger

from place_resolver.config import (
    MANUAL_CONFIDENCE,
    MAP_HOME_URL,
    MAX_ATTEMPTS,
    RETRY_DELAY_MS,
    STATUS_VERSION,
    STRATEGY_DELAY_MS,
    SUCCESS_RATES,
)
from place_resolver.models import (
    BusinessRecord,
    Candidate,
    Coordinates,
    InvalidBusinessRecordError,
    ResolutionResult,
    StepRecord,
)
from place_resolver.retry import with_retry
from place_resolver.strategies.aggregated_search import AggregatedSearchAPI
from place_resolver.strategies.coordinate_lookup import CoordinateLookup, synthetic_coordinate_id
from place_resolver.strategies.text_search import TextSearchLookup

MANUAL_METHOD = "manual"
MANUAL_STEP_NAME = "manual check"


class ResolutionState(str, Enum):
    PENDING = "PENDING"
    TRYING_TEXT_SEARCH = "TRYING_TEXT_SEARCH"
    TRYING_AGGREGATED_API = "TRYING_AGGREGATED_API"
    MANUAL_FALLBACK = "MANUAL_FALLBACK"
    RESOLVED = "RESOLVED"


class Strategy(Protocol):
    async def attempt(self, record: BusinessRecord) -> Optional[Candidate]:
        ...


@dataclass(frozen=True)
class StrategyEntry:
    """One slot in the try order. Success rate is a static prior for dashboards."""
    step_id: str
    name: str
    method: str
    description: str
    success_rate: float
    state: ResolutionState
    strategy: Strategy


def default_strategies() -> List[StrategyEntry]:
    text_search = TextSearchLookup()
    aggregated = AggregatedSearchAPI()
    return [
        StrategyEntry(
            step_id="1",
            name=text_search.name,
            method="scraping",
            description=text_search.description,
            success_rate=SUCCESS_RATES["1"],
            state=ResolutionState.TRYING_TEXT_SEARCH,
            strategy=text_search,
        ),
        StrategyEntry(
            step_id="2",
            name=aggregated.name,
            method="allsearch",
            description=aggregated.description,
            success_rate=SUCCESS_RATES["2"],
            state=ResolutionState.TRYING_AGGREGATED_API,
            strategy=aggregated,
        ),
    ]


def manual_instructions(record: BusinessRecord) -> Tuple[str, ...]:
    query = f"{record.clean_name} {record.address or ''}".strip()
    return (
        f"1. Open {MAP_HOME_URL}",
        f'2. Search for "{query}"',
        "3. Click the matching store in the search results",
        "4. Read the number after /place/ in the page URL",
    )


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ResolutionPipeline:
    """
    Resolves a BusinessRecord to a place id. Holds only read-only configuration,
    so one instance can serve concurrent resolve() calls.
    """

    def __init__(
        self,
        strategies: Optional[Sequence[StrategyEntry]] = None,
        max_attempts: int = MAX_ATTEMPTS,
        delay_ms: int = RETRY_DELAY_MS,
        strategy_delay_ms: int = STRATEGY_DELAY_MS,
        coordinate_lookup: Optional[CoordinateLookup] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.strategies: Tuple[StrategyEntry, ...] = tuple(
            strategies if strategies is not None else default_strategies()
        )
        self.max_attempts = max_attempts
        self.delay_ms = delay_ms
        self.strategy_delay_ms = strategy_delay_ms
        self.coordinate_lookup = coordinate_lookup or CoordinateLookup()

    @property
    def manual_step_id(self) -> str:
        return str(len(self.strategies) + 1)

    async def resolve(self, record: BusinessRecord) -> ResolutionResult:
        """
        Run the strategies in order and return the first success or the manual fallback.

        Args:
            record (BusinessRecord): Business to resolve.

        Returns:
            ResolutionResult: Always well formed; manual when nothing resolved.

        Raises:
            InvalidBusinessRecordError: The record has no usable name.
        """
        if record is None or not record.clean_name:
            raise InvalidBusinessRecordError("Business record must have a non-empty name")

        start = time.perf_counter()
        steps: List[StepRecord] = []
        state = ResolutionState.PENDING
        logger.info(f"🔍 Resolving place id for '{record.clean_name}' ({record.address or 'no address'})")

        for index, entry in enumerate(self.strategies):
            if index > 0 and self.strategy_delay_ms > 0:
                await asyncio.sleep(self.strategy_delay_ms / 1000)

            state = entry.state
            logger.debug(f"[{state.value}] step {entry.step_id}: {entry.name}")
            candidate = await with_retry(
                lambda entry=entry: entry.strategy.attempt(record),
                max_attempts=self.max_attempts,
                delay_ms=self.delay_ms,
                label=f"step {entry.step_id} ({entry.name})",
            )

            if candidate is not None and candidate.synthetic:
                logger.warning(f"⚠️ step {entry.step_id} returned placeholder {candidate.external_id}, not a place id")
                steps.append(StepRecord(
                    step_id=entry.step_id,
                    strategy_name=entry.name,
                    succeeded=False,
                    error=f"{entry.name} returned only a synthetic placeholder {candidate.external_id}",
                ))
                continue

            if candidate is not None:
                steps.append(StepRecord(
                    step_id=entry.step_id,
                    strategy_name=entry.name,
                    succeeded=True,
                    external_id=candidate.external_id,
                ))
                duration = _elapsed_ms(start)
                state = ResolutionState.RESOLVED
                logger.info(f"✅ [{state.value}] step {entry.step_id} found {candidate.external_id} ({duration}ms)")
                return ResolutionResult(
                    external_id=candidate.external_id,
                    method=entry.method,
                    confidence=candidate.confidence,
                    steps=tuple(steps),
                    duration_ms=duration,
                    timestamp=_now(),
                    success_rate=entry.success_rate,
                    display_name=candidate.display_name,
                    address=candidate.address or candidate.road_address,
                )

            steps.append(StepRecord(
                step_id=entry.step_id,
                strategy_name=entry.name,
                succeeded=False,
                error=f"{entry.name} found no place id after {self.max_attempts} attempts",
            ))

        state = ResolutionState.MANUAL_FALLBACK
        instructions = manual_instructions(record)
        steps.append(StepRecord(
            step_id=self.manual_step_id,
            strategy_name=MANUAL_STEP_NAME,
            succeeded=False,
            manual_instructions=instructions,
        ))
        duration = _elapsed_ms(start)
        logger.info(f"[{state.value}] no automated match for '{record.clean_name}', manual check needed ({duration}ms)")

        coordinate_id = synthetic_coordinate_id(record.coordinates) if record.coordinates else None
        return ResolutionResult(
            external_id=None,
            method=MANUAL_METHOD,
            confidence=MANUAL_CONFIDENCE,
            steps=tuple(steps),
            duration_ms=duration,
            timestamp=_now(),
            manual_instructions=instructions,
            coordinate_id=coordinate_id,
            success_rate=SUCCESS_RATES.get(self.manual_step_id, MANUAL_CONFIDENCE),
        )

    async def locate_by_coordinates(self, coordinates: Coordinates, name_hint: Optional[str] = None) -> Candidate:
        """Coordinate-based lookup; may return a synthetic, non-authoritative candidate."""
        return await self.coordinate_lookup.attempt(coordinates, name_hint)

    def system_status(self) -> Dict[str, Any]:
        """Per-step reliability priors for the operational dashboard."""
        retry_config = {
            "maxRetries": self.max_attempts,
            "retryDelay": self.delay_ms,
        }
        methods: Dict[str, Any] = {}
        for entry in self.strategies:
            methods[entry.step_id] = {
                "name": entry.name,
                "successRate": entry.success_rate,
                "description": entry.description,
                "retryConfig": dict(retry_config),
            }
        methods[self.manual_step_id] = {
            "name": MANUAL_STEP_NAME,
            "successRate": SUCCESS_RATES.get(self.manual_step_id, MANUAL_CONFIDENCE),
            "description": "Instructions for finding the place id by hand",
        }
        return {
            "methods": methods,
            "overallSuccessRate": max((e.success_rate for e in self.strategies), default=0.0),
            "lastUpdated": _now(),
            "version": STATUS_VERSION,
        }
