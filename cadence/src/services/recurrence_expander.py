"""
Recurrence expansion.

Turns a rule, an anchor start and a duration into concrete half-open
occurrence ranges. Expansion runs in the series timezone so that a weekly
09:00 meeting stays at 09:00 local time on both sides of a daylight-saving
change; results are returned in UTC.

Occurrences are always generated from the anchor, so expanding to a later
window end returns the earlier results unchanged followed by the new ones.
An optional window start skips ahead without changing which instants the
rule produces; the occurrence cap applies per call, inside the window.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from itertools import islice
from typing import Iterator, List, Optional

from dateutil.rrule import rrulestr

from cadence.src.config.settings import get_settings
from cadence.src.services.exceptions import InvalidRuleError, ValidationError
from cadence.src.services.rule_validation import (
    normalize_until,
    strip_rule_prefix,
    validate_rrule,
)
from cadence.src.utils.time_ranges import TimeRange, to_utc_aware, zone_for


@dataclass(frozen=True)
class OccurrenceRange(TimeRange):
    """An occurrence ``[start, end)`` in UTC plus its local calendar date."""

    local_date: date = None

    def to_dict(self):
        data = super().to_dict()
        data["occurrence_date"] = self.local_date.isoformat()
        return data


def end_of_local_day(day: date, tz_name: Optional[str] = None) -> datetime:
    """Last instant of ``day`` in the given timezone, as an aware datetime."""
    return datetime.combine(day, time.max, tzinfo=zone_for(tz_name))


def start_of_local_day(day: date, tz_name: Optional[str] = None) -> datetime:
    """First instant of ``day`` in the given timezone, as an aware datetime."""
    return datetime.combine(day, time.min, tzinfo=zone_for(tz_name))


def local_date_of(moment: datetime, tz_name: Optional[str] = None) -> date:
    """Calendar date of ``moment`` in the given timezone (naive = UTC)."""
    return to_utc_aware(moment).astimezone(zone_for(tz_name)).date()


def _build_recurrence(rule, anchor_start, duration, tz_name):
    validate_rrule(rule)
    if duration is None or duration <= timedelta(0):
        raise ValidationError("Duration must be positive", field="duration")

    try:
        zone = zone_for(tz_name)
    except (KeyError, ValueError):
        raise ValidationError(f"Unknown timezone: {tz_name}", field="timezone")

    try:
        recurrence = rrulestr(
            normalize_until(strip_rule_prefix(rule), tz_name),
            dtstart=to_utc_aware(anchor_start).astimezone(zone),
        )
    except (ValueError, TypeError) as e:
        raise InvalidRuleError(f"Invalid RRULE: {e}")
    return recurrence, zone


def iter_occurrences(
    rule: str,
    anchor_start: datetime,
    duration: timedelta,
    tz_name: Optional[str],
    window_end: datetime,
    window_start: Optional[datetime] = None,
) -> Iterator[OccurrenceRange]:
    """
    Lazily yield the occurrences starting in ``[window_start, window_end]``.

    Uncapped: the rule's COUNT / UNTIL and the window are the only bounds.
    The rule is validated before the first occurrence is requested.
    """
    recurrence, zone = _build_recurrence(rule, anchor_start, duration, tz_name)
    local_window_end = to_utc_aware(window_end).astimezone(zone)
    if window_start is None:
        local_occurrences = iter(recurrence)
    else:
        local_occurrences = recurrence.xafter(
            to_utc_aware(window_start).astimezone(zone), inc=True
        )

    def _generate():
        for local_occurrence in local_occurrences:
            if local_occurrence > local_window_end:
                return
            start = local_occurrence.astimezone(timezone.utc)
            yield OccurrenceRange(
                start=start,
                end=start + duration,
                local_date=local_occurrence.date(),
            )

    return _generate()


def expand_occurrences(
    rule: str,
    anchor_start: datetime,
    duration: timedelta,
    tz_name: Optional[str],
    window_end: datetime,
    max_occurrences: Optional[int] = None,
    window_start: Optional[datetime] = None,
) -> List[OccurrenceRange]:
    """
    Expand a recurrence rule into occurrence ranges.

    Args:
        rule: RRULE body (COUNT / UNTIL honoured)
        anchor_start: First occurrence start; naive values are UTC
        duration: Length of every occurrence
        tz_name: IANA timezone for wall-clock expansion (None = configured default)
        window_end: Last allowed occurrence start, inclusive; naive = UTC
        max_occurrences: Cap on results of this call (defaults to CADENCE_MAX_OCCURRENCES)
        window_start: First allowed occurrence start, inclusive (default: the anchor).
            The cap counts only occurrences inside the window.

    Returns:
        Occurrences ordered by start

    Raises:
        InvalidRuleError: If the rule cannot be parsed
        UnsupportedFrequencyError: For sub-hourly rules
        ValidationError: If duration is not positive or the timezone is unknown
    """
    limit = max_occurrences or get_settings().max_occurrences
    occurrences = iter_occurrences(
        rule, anchor_start, duration, tz_name, window_end, window_start=window_start
    )
    return list(islice(occurrences, limit))
