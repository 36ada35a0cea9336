"""Place-identity resolution for store records."""
from place_resolver.models import (
    BusinessRecord,
    Candidate,
    Coordinates,
    InvalidBusinessRecordError,
    ResolutionResult,
    StepRecord,
)
from place_resolver.pipeline import ResolutionPipeline

__all__ = [
    "BusinessRecord",
    "Candidate",
    "Coordinates",
    "InvalidBusinessRecordError",
    "ResolutionPipeline",
    "ResolutionResult",
    "StepRecord",
]
