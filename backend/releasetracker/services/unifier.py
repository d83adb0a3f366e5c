"""
unifier.py

Fold raw per-country/per-type release-date facts into one canonical summary
per movie. Pure and total: malformed input was already dropped by the parser,
and an empty list yields an all-null summary.

Precedence, applied in fixed release-type order so the result does not depend
on the order facts arrive in:
  - Premiere fills `primary`.
  - Theatrical (limited) fills `limited` and a provisional `theatrical`.
  - Theatrical (wide) always overwrites `theatrical`.
  - Digital fills `digital`; the first of Digital, Physical, TV fills `streaming`.
"""
import logging
from typing import Dict, Iterable

from releasetracker.schemas import ReleaseDateFact, ReleaseType, UnifiedReleaseDates

logger = logging.getLogger(__name__)


def _latest_by_type(facts: Iterable[ReleaseDateFact], country: str) -> Dict[ReleaseType, ReleaseDateFact]:
    # Last fact of a type wins; duplicates mean the source sent two facts for one key
    by_type: Dict[ReleaseType, ReleaseDateFact] = {}
    for fact in facts:
        if fact.country != country:
            continue
        previous = by_type.get(fact.release_type)
        if previous is not None and previous.release_date != fact.release_date:
            logger.debug(
                f"Duplicate {fact.release_type.name} fact for movie {fact.movie_id}/{country}: "
                f"{previous.release_date} replaced by {fact.release_date}"
            )
        by_type[fact.release_type] = fact
    return by_type


def unify(facts: Iterable[ReleaseDateFact], country: str = "US") -> UnifiedReleaseDates:
    """Build the unified summary for one movie restricted to `country`."""
    by_type = _latest_by_type(facts or [], country)
    dates = UnifiedReleaseDates()

    for release_type in sorted(by_type):
        value = by_type[release_type].release_date
        if release_type == ReleaseType.PREMIERE:
            if dates.primary is None:
                dates.primary = value
        elif release_type == ReleaseType.THEATRICAL_LIMITED:
            if dates.limited is None:
                dates.limited = value
            if dates.theatrical is None:
                dates.theatrical = value
        elif release_type == ReleaseType.THEATRICAL:
            dates.theatrical = value
        elif release_type == ReleaseType.DIGITAL:
            if dates.digital is None:
                dates.digital = value
            if dates.streaming is None:
                dates.streaming = value
        elif release_type in (ReleaseType.PHYSICAL, ReleaseType.TV):
            if dates.streaming is None:
                dates.streaming = value

    return dates
