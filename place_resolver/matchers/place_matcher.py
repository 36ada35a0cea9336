import re
from typing import List, Optional, Sequence

from place_resolver.models import BusinessRecord, Candidate

_PUNCTUATION_RE = re.compile(r"[^\w\s]")


def _normalize_name(name: Optional[str]) -> str:
    return _PUNCTUATION_RE.sub("", (name or "").lower()).strip()


def _address_tokens(target: BusinessRecord) -> List[str]:
    address = target.address or target.road_address or ""
    return [token for token in address.split() if len(token) > 1]


def _name_matches(candidate: Candidate, target_name: str) -> bool:
    cand_name = _normalize_name(candidate.display_name)
    if not cand_name or not target_name:
        return False
    return cand_name in target_name or target_name in cand_name


def _address_matches(candidate: Candidate, tokens: List[str]) -> bool:
    cand_addresses = [a for a in (candidate.address, candidate.road_address) if a]
    return any(token in addr for token in tokens for addr in cand_addresses)


def match(candidates: Sequence[Candidate], target: BusinessRecord) -> Optional[Candidate]:
    """
    Return the first candidate whose name and address both agree with the target.

    Candidates are checked in the order the strategy returned them; there is no
    global ranking, so ties go to whichever the search surface listed first.

    Args:
        candidates (Sequence[Candidate]): Candidates from a single search response.
        target (BusinessRecord): Business being resolved.

    Returns:
        Optional[Candidate]: The first matching candidate, or None.
    """
    target_name = _normalize_name(target.clean_name)
    tokens = _address_tokens(target)
    if not tokens:
        return None

    for cand in candidates:
        if _name_matches(cand, target_name) and _address_matches(cand, tokens):
            return cand

    return None
