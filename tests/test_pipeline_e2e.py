import asyncio

import pytest
from typing import List, Optional
from unittest.mock import AsyncMock, MagicMock, patch

from place_resolver.clients import FetchResponse
from place_resolver.models import (
    BusinessRecord,
    Candidate,
    Coordinates,
    InvalidBusinessRecordError,
    ResolutionResult,
    SourceStrategy,
)
from place_resolver.pipeline import (
    ResolutionPipeline,
    ResolutionState,
    StrategyEntry,
    default_strategies,
)

RECORD = BusinessRecord(name="Cafe Bloom", address="Seoul Gangnam 123")


class ScriptedStrategy:
    """Returns queued results in order and counts calls."""

    def __init__(self, results: List[Optional[Candidate]]):
        self.results = list(results)
        self.calls = 0

    async def attempt(self, record: BusinessRecord) -> Optional[Candidate]:
        self.calls += 1
        result = self.results.pop(0) if self.results else None
        if isinstance(result, Exception):
            raise result
        return result


def _candidate(place_id: str, source: SourceStrategy, confidence: float) -> Candidate:
    return Candidate(external_id=place_id, source_strategy=source, confidence=confidence)


def _pipeline(text: ScriptedStrategy, aggregated: ScriptedStrategy, **kwargs) -> ResolutionPipeline:
    entries = [
        StrategyEntry("1", "scraping", "scraping", "text", 0.85, ResolutionState.TRYING_TEXT_SEARCH, text),
        StrategyEntry("2", "allSearch API", "allsearch", "api", 0.4, ResolutionState.TRYING_AGGREGATED_API, aggregated),
    ]
    kwargs.setdefault("delay_ms", 0)
    kwargs.setdefault("strategy_delay_ms", 0)
    return ResolutionPipeline(strategies=entries, **kwargs)


def _assert_well_formed(result: ResolutionResult, strategy_count: int = 2):
    resolved = result.external_id is not None and result.method != "manual"
    manual = result.external_id is None and result.method == "manual" and len(result.manual_instructions) > 0
    assert resolved != manual
    assert 1 <= len(result.steps) <= strategy_count + 1
    ordinals = [int(step.step_id) for step in result.steps]
    assert ordinals == sorted(set(ordinals))
    last = result.steps[-1]
    assert last.succeeded or last.manual_instructions


@pytest.mark.asyncio
async def test_text_search_success_short_circuits():
    text = ScriptedStrategy([_candidate("1234567", SourceStrategy.TEXT_SEARCH, 0.85)])
    aggregated = ScriptedStrategy([])

    result = await _pipeline(text, aggregated).resolve(RECORD)

    _assert_well_formed(result)
    assert text.calls == 1
    assert aggregated.calls == 0
    assert result.method == "scraping"
    assert result.place_url == "https://m.place.naver.com/place/1234567/home"
    assert result.review_url == "https://m.place.naver.com/place/1234567/review"


@pytest.mark.asyncio
async def test_text_search_succeeds_on_second_attempt():
    text = ScriptedStrategy([None, _candidate("1234567", SourceStrategy.TEXT_SEARCH, 0.85)])
    aggregated = ScriptedStrategy([])

    result = await _pipeline(text, aggregated).resolve(RECORD)

    _assert_well_formed(result)
    assert result.method == "scraping"
    assert result.confidence == 0.85
    assert len(result.steps) == 1
    assert result.steps[0].succeeded
    assert result.steps[0].external_id == "1234567"
    assert text.calls == 2


@pytest.mark.asyncio
async def test_aggregated_search_used_after_text_search_exhausted():
    text = ScriptedStrategy([None, RuntimeError("blocked"), None])
    aggregated = ScriptedStrategy([None, _candidate("7654321", SourceStrategy.AGGREGATED_API, 0.4)])

    result = await _pipeline(text, aggregated).resolve(RECORD)

    _assert_well_formed(result)
    assert result.method == "allsearch"
    assert result.confidence == 0.4
    assert result.external_id == "7654321"
    assert [s.succeeded for s in result.steps] == [False, True]
    assert result.steps[0].error
    assert result.steps[0].external_id is None
    assert text.calls == 3
    assert aggregated.calls == 2


@pytest.mark.asyncio
async def test_all_strategies_fail_gives_manual_fallback():
    text = ScriptedStrategy([])
    aggregated = ScriptedStrategy([])

    result = await _pipeline(text, aggregated).resolve(RECORD)

    _assert_well_formed(result)
    assert result.external_id is None
    assert result.place_url is None
    assert result.method == "manual"
    assert result.confidence == 1.0
    assert len(result.steps) == 3
    assert [s.step_id for s in result.steps] == ["1", "2", "3"]
    assert result.steps[-1].manual_instructions == result.manual_instructions
    assert any("Cafe Bloom" in line for line in result.manual_instructions)
    assert any("Seoul Gangnam 123" in line for line in result.manual_instructions)
    assert result.coordinate_id is None
    assert text.calls == 3
    assert aggregated.calls == 3


@pytest.mark.asyncio
async def test_manual_fallback_carries_synthetic_coordinate_id():
    record = BusinessRecord(name="Cafe Bloom", coordinates=Coordinates(x=127.123, y=37.456))

    result = await _pipeline(ScriptedStrategy([]), ScriptedStrategy([]), max_attempts=1).resolve(record)

    assert result.method == "manual"
    assert result.external_id is None
    assert result.coordinate_id == "127.123_37.456"
    assert result.to_dict()["coordinateId"] == "127.123_37.456"


@pytest.mark.asyncio
async def test_nameless_record_fails_before_any_strategy():
    text = ScriptedStrategy([])
    aggregated = ScriptedStrategy([])
    pipeline = _pipeline(text, aggregated)

    with pytest.raises(InvalidBusinessRecordError):
        await pipeline.resolve(BusinessRecord(name="<b></b>", address="Seoul"))
    assert text.calls == 0
    assert aggregated.calls == 0


@pytest.mark.asyncio
async def test_strategy_delay_only_between_strategies():
    pipeline = _pipeline(ScriptedStrategy([]), ScriptedStrategy([]), max_attempts=1, strategy_delay_ms=500)

    with patch("place_resolver.pipeline.asyncio.sleep", new=AsyncMock()) as mock_sleep:
        await pipeline.resolve(RECORD)

    mock_sleep.assert_awaited_once_with(0.5)


@pytest.mark.asyncio
async def test_default_pipeline_end_to_end_with_mocked_web():
    """Real strategies; the first text search is blocked, the second finds a place."""
    search_calls = {"count": 0}

    async def handler(url, headers=None, **kwargs):
        if "search.naver.com" in url:
            search_calls["count"] += 1
            if search_calls["count"] == 1:
                raise RuntimeError("blocked")
            return FetchResponse(status=200, url=url, text='<a href="/place/1234567">Cafe Bloom</a>')
        if "m.place.naver.com/place/1234567" in url:
            return FetchResponse(status=200, url=url, text="<html></html>")
        raise AssertionError(f"unexpected url {url}")

    client = MagicMock()
    client.get = AsyncMock(side_effect=handler)

    with patch("place_resolver.strategies.text_search.WebClient", return_value=client), \
         patch("place_resolver.strategies.aggregated_search.WebClient", return_value=client):
        pipeline = ResolutionPipeline(delay_ms=0, strategy_delay_ms=0)
        result = await pipeline.resolve(RECORD)

    assert result.method == "scraping"
    assert result.confidence == 0.85
    assert result.external_id == "1234567"
    assert len(result.steps) == 1
    assert search_calls["count"] == 2
    # No og tags on the page, so the store details fall back to the input record
    assert result.display_name == "Cafe Bloom"
    assert result.address == "Seoul Gangnam 123"


@pytest.mark.asyncio
async def test_default_pipeline_falls_back_to_manual_when_web_is_down():
    client = MagicMock()
    client.get = AsyncMock(side_effect=ConnectionError("offline"))

    with patch("place_resolver.strategies.text_search.WebClient", return_value=client), \
         patch("place_resolver.strategies.aggregated_search.WebClient", return_value=client):
        result = await ResolutionPipeline(delay_ms=0, strategy_delay_ms=0).resolve(RECORD)

    _assert_well_formed(result)
    assert result.method == "manual"
    assert len(result.steps) == 3
    # 3 text-search attempts plus 3 attempts over 2 aggregated query variants
    assert client.get.await_count == 3 + 3 * 2


def test_system_status_reports_static_priors():
    status = ResolutionPipeline(strategies=default_strategies()).system_status()

    methods = status["methods"]
    assert set(methods) == {"1", "2", "3"}
    assert methods["1"]["successRate"] == 0.85
    assert methods["2"]["successRate"] == 0.4
    assert methods["3"]["successRate"] == 1.0
    assert methods["1"]["retryConfig"]["maxRetries"] == 3
    assert "retryConfig" not in methods["3"]
    assert status["overallSuccessRate"] == 0.85
    assert status["version"]


def test_result_rejects_inconsistent_states():
    step = MagicMock()
    with pytest.raises(ValueError):
        ResolutionResult(external_id=None, method="scraping", confidence=0.85, steps=(step,),
                         duration_ms=1, timestamp="t")
    with pytest.raises(ValueError):
        ResolutionResult(external_id="1234567", method="manual", confidence=1.0, steps=(step,),
                         duration_ms=1, timestamp="t", manual_instructions=("open the map",))
    with pytest.raises(ValueError):
        ResolutionResult(external_id=None, method="manual", confidence=1.0, steps=(step,),
                         duration_ms=1, timestamp="t")
    with pytest.raises(ValueError):
        ResolutionResult(external_id="1234567", method="scraping", confidence=0.85, steps=(),
                         duration_ms=1, timestamp="t")


def test_record_from_search_item():
    record = BusinessRecord.from_search_item({
        "title": "<b>카페</b> 블룸",
        "address": "서울특별시 강남구 역삼동 825",
        "roadAddress": "서울특별시 강남구 강남대로 390",
        "mapx": "1270276140",
        "mapy": "374979523",
    })

    assert record.clean_name == "카페 블룸"
    assert record.road_address == "서울특별시 강남구 강남대로 390"
    assert record.coordinates == Coordinates(x="1270276140", y="374979523")
    assert BusinessRecord.from_search_item({"title": "x"}).coordinates is None


class BlockedStrategy:
    """Never answers, like a request stuck on an unresponsive host."""

    def __init__(self):
        self.calls = 0

    async def attempt(self, record: BusinessRecord) -> Optional[Candidate]:
        self.calls += 1
        await asyncio.Event().wait()


@pytest.mark.asyncio
async def test_caller_timeout_cancels_blocked_strategy():
    text = BlockedStrategy()
    aggregated = ScriptedStrategy([])

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(_pipeline(text, aggregated).resolve(RECORD), timeout=0.05)

    assert text.calls == 1
    assert aggregated.calls == 0


@pytest.mark.asyncio
async def test_synthetic_candidate_is_not_accepted_as_resolved():
    placeholder = Candidate(
        external_id="127.123_37.456",
        source_strategy=SourceStrategy.COORDINATE,
        confidence=0.1,
        synthetic=True,
    )
    text = ScriptedStrategy([placeholder])
    aggregated = ScriptedStrategy([])

    result = await _pipeline(text, aggregated, max_attempts=1).resolve(RECORD)

    _assert_well_formed(result)
    assert result.method == "manual"
    assert result.external_id is None
    assert result.steps[0].succeeded is False
    assert "synthetic" in result.steps[0].error


@pytest.mark.asyncio
async def test_synthetic_candidate_falls_through_to_next_strategy():
    placeholder = Candidate(
        external_id="127.123_37.456",
        source_strategy=SourceStrategy.COORDINATE,
        confidence=0.1,
        synthetic=True,
    )
    text = ScriptedStrategy([placeholder])
    aggregated = ScriptedStrategy([_candidate("7654321", SourceStrategy.AGGREGATED_API, 0.4)])

    result = await _pipeline(text, aggregated).resolve(RECORD)

    _assert_well_formed(result)
    assert result.method == "allsearch"
    assert result.external_id == "7654321"
    assert [s.succeeded for s in result.steps] == [False, True]


@pytest.mark.asyncio
async def test_resolved_result_carries_prior_and_store_details():
    found = Candidate(
        external_id="1234567",
        source_strategy=SourceStrategy.TEXT_SEARCH,
        confidence=0.85,
        display_name="Cafe Bloom Gangnam",
        road_address="Seoul Gangnam-daero 390",
    )
    result = await _pipeline(ScriptedStrategy([found]), ScriptedStrategy([])).resolve(RECORD)

    assert result.success_rate == 0.85
    assert result.display_name == "Cafe Bloom Gangnam"
    assert result.address == "Seoul Gangnam-daero 390"
    data = result.to_dict()
    assert data["successRate"] == 0.85
    assert data["storeName"] == "Cafe Bloom Gangnam"
    assert data["address"] == "Seoul Gangnam-daero 390"


@pytest.mark.asyncio
async def test_manual_result_carries_manual_prior():
    result = await _pipeline(ScriptedStrategy([]), ScriptedStrategy([]), max_attempts=1).resolve(RECORD)

    assert result.success_rate == 1.0
    assert result.to_dict()["successRate"] == 1.0
    assert "storeName" not in result.to_dict()
