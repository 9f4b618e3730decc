"""
Recurrence rule validation and rewriting.

Rules are RFC 5545 RRULE bodies such as ``FREQ=WEEKLY;BYDAY=MO,WE,FR``.
Sub-hourly frequencies are rejected so a single series can never expand
into an unbounded number of records.
"""

import re
from datetime import date, datetime, time, timezone
from typing import Dict, Optional

from dateutil.rrule import rrulestr

from cadence.src.services.exceptions import InvalidRuleError, UnsupportedFrequencyError
from cadence.src.utils.time_ranges import zone_for


SUPPORTED_FREQUENCIES = ("HOURLY", "DAILY", "WEEKLY", "MONTHLY", "YEARLY")
BLOCKED_FREQUENCIES = ("SECONDLY", "MINUTELY")

_FREQ_PATTERN = re.compile(r"FREQ=([A-Z]+)")
_END_CLAUSE_PATTERN = re.compile(r";?(UNTIL|COUNT)=[^;]+", re.IGNORECASE)
_UNTIL_PATTERN = re.compile(r"UNTIL=(\d{8})(?:T(\d{6}))?(Z?)", re.IGNORECASE)

_DAY_NAMES = {
    "MO": "Monday",
    "TU": "Tuesday",
    "WE": "Wednesday",
    "TH": "Thursday",
    "FR": "Friday",
    "SA": "Saturday",
    "SU": "Sunday",
}


def strip_rule_prefix(rule: str) -> str:
    """Remove surrounding whitespace and an optional ``RRULE:`` prefix."""
    rule = rule.strip()
    if rule.upper().startswith("RRULE:"):
        rule = rule[len("RRULE:"):]
    return rule


def normalize_until(rule: str, tz_name: Optional[str] = None) -> str:
    """
    Rewrite a floating UNTIL value as UTC.

    dateutil requires UNTIL to be UTC whenever DTSTART is timezone-aware.
    Floating values are read as wall-clock time in ``tz_name``; a bare date
    means the end of that day.
    """
    match = _UNTIL_PATTERN.search(rule)
    if not match or match.group(3):
        return rule

    day = datetime.strptime(match.group(1), "%Y%m%d").date()
    clock = (
        datetime.strptime(match.group(2), "%H%M%S").time()
        if match.group(2) else time(23, 59, 59)
    )
    local = datetime.combine(day, clock, tzinfo=zone_for(tz_name))
    until_utc = local.astimezone(timezone.utc)
    return (
        rule[:match.start()]
        + f"UNTIL={until_utc:%Y%m%dT%H%M%S}Z"
        + rule[match.end():]
    )


def validate_rrule(rule: Optional[str]) -> str:
    """
    Validate a recurrence rule.

    Args:
        rule: RRULE body, optionally prefixed with ``RRULE:``

    Returns:
        The frequency token (e.g. "WEEKLY")

    Raises:
        InvalidRuleError: If the rule is empty, has no FREQ, names an unknown
            frequency, or cannot be parsed
        UnsupportedFrequencyError: If the frequency is SECONDLY or MINUTELY
    """
    if not rule or not rule.strip():
        raise InvalidRuleError("Recurrence rule is required")

    body = strip_rule_prefix(rule)
    match = _FREQ_PATTERN.search(body.upper())
    if not match:
        raise InvalidRuleError("Invalid RRULE: missing FREQ")

    frequency = match.group(1)
    if frequency in BLOCKED_FREQUENCIES:
        raise UnsupportedFrequencyError(frequency)
    if frequency not in SUPPORTED_FREQUENCIES:
        raise InvalidRuleError(f"Invalid FREQ value: {frequency}")

    try:
        rrulestr(
            normalize_until(body),
            dtstart=datetime(2000, 1, 1, tzinfo=timezone.utc),
        )
    except (ValueError, TypeError) as e:
        raise InvalidRuleError(f"Invalid RRULE: {e}")

    return frequency


def set_rule_until(rule: str, until_date: date, tz_name: Optional[str] = None) -> str:
    """
    Replace a rule's termination with an UNTIL at the end of ``until_date``.

    Any existing UNTIL or COUNT clause is removed. The cut-off is 23:59:59
    local time in ``tz_name`` (UTC when omitted), written in UTC.

    Example:
        >>> set_rule_until("FREQ=DAILY;COUNT=10", date(2026, 3, 1))
        'FREQ=DAILY;UNTIL=20260301T235959Z'
    """
    body = _END_CLAUSE_PATTERN.sub("", strip_rule_prefix(rule))

    local_end = datetime.combine(
        until_date, time(23, 59, 59), tzinfo=zone_for(tz_name)
    )
    until_utc = local_end.astimezone(timezone.utc)
    body = f"{body};UNTIL={until_utc:%Y%m%dT%H%M%S}Z"

    return re.sub(r";{2,}", ";", body).strip(";")


def parse_rule_parts(rule: str) -> Dict[str, str]:
    """Split a rule into an upper-cased ``{PART: value}`` mapping."""
    parts = {}
    for part in strip_rule_prefix(rule).split(";"):
        if "=" not in part:
            continue
        key, value = part.split("=", 1)
        parts[key.strip().upper()] = value.strip().upper()
    return parts


def describe_rule(rule: str) -> str:
    """
    Render a short human-readable description of a rule.

    Example:
        >>> describe_rule("FREQ=WEEKLY;BYDAY=MO,WE,FR;COUNT=12")
        'Weekly on Monday, Wednesday, Friday, 12 times'
    """
    parts = parse_rule_parts(rule)
    interval = int(parts.get("INTERVAL", "1") or 1)
    frequency = parts.get("FREQ")
    days = [_DAY_NAMES.get(d, d) for d in parts["BYDAY"].split(",")] if parts.get("BYDAY") else []

    if frequency == "HOURLY":
        description = "Every hour" if interval == 1 else f"Every {interval} hours"
    elif frequency == "DAILY":
        description = "Every day" if interval == 1 else f"Every {interval} days"
    elif frequency == "WEEKLY":
        if days:
            description = (
                f"Weekly on {', '.join(days)}" if interval == 1
                else f"Every {interval} weeks on {', '.join(days)}"
            )
        else:
            description = "Every week" if interval == 1 else f"Every {interval} weeks"
    elif frequency == "MONTHLY":
        if parts.get("BYMONTHDAY"):
            description = (
                f"Monthly on day {parts['BYMONTHDAY'].replace(',', ', ')}" if interval == 1
                else f"Every {interval} months on day {parts['BYMONTHDAY'].replace(',', ', ')}"
            )
        else:
            description = "Every month" if interval == 1 else f"Every {interval} months"
    elif frequency == "YEARLY":
        description = "Every year" if interval == 1 else f"Every {interval} years"
    else:
        description = "Recurring"

    if parts.get("COUNT"):
        description += f", {parts['COUNT']} times"
    elif parts.get("UNTIL"):
        until_day = datetime.strptime(parts["UNTIL"][:8], "%Y%m%d").date()
        description += f", until {until_day.isoformat()}"

    return description
