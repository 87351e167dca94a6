"""Retention policy agent that deletes stored results and records past their age limit."""

from __future__ import annotations

import logging
import re
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Any, Callable, Optional

RESULTS_RETENTION_POLICY_AGENT = "results-retention-policy-agent"
RETENTION_POLICY_CONFIG_NAME = "tekton-results-config-results-retention-policy"

DEFAULT_RUN_AT = "7 7 * * 0"
DEFAULT_MAX_RETENTION = timedelta(days=30)

_MONTHS = {
    name: number
    for number, name in enumerate(
        ("jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"), start=1
    )
}
_DAYS = {name: number for number, name in enumerate(("sun", "mon", "tue", "wed", "thu", "fri", "sat"))}

_FIELDS = (
    ("minute", 0, 59, None),
    ("hour", 0, 23, None),
    ("day of month", 1, 31, None),
    ("month", 1, 12, _MONTHS),
    ("day of week", 0, 6, _DAYS),
)

_DESCRIPTORS = {
    "@yearly": "0 0 1 1 *",
    "@annually": "0 0 1 1 *",
    "@monthly": "0 0 1 * *",
    "@weekly": "0 0 * * 0",
    "@daily": "0 0 * * *",
    "@midnight": "0 0 * * *",
    "@hourly": "0 * * * *",
}

_DURATION_UNITS = {
    "ns": timedelta(microseconds=0.001),
    "us": timedelta(microseconds=1),
    "µs": timedelta(microseconds=1),
    "ms": timedelta(milliseconds=1),
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")

_SEARCH_YEARS = 5


@dataclass
class RetentionPolicy:
    """When the retention job runs and how old data may get before it is deleted."""

    run_at: str = DEFAULT_RUN_AT
    max_retention: timedelta = DEFAULT_MAX_RETENTION


def _parse_duration(text: str) -> timedelta:
    body = text.lstrip("+-")
    negative = text.startswith("-")
    if body == "0":
        return timedelta(0)
    total = timedelta(0)
    position = 0
    for match in _DURATION_PART.finditer(body):
        if match.start() != position:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    if not body or position != len(body):
        raise ValueError(f"invalid duration {text!r}")
    return -total if negative else total


def _field_value(text: str, names: Optional[dict[str, int]], spec: str) -> int:
    if names is not None and text.lower() in names:
        return names[text.lower()]
    if not text.isdigit():
        raise ValueError(f"failed to parse int from {text!r} in {spec!r}")
    return int(text)


def _parse_field(expr: str, low: int, high: int, names: Optional[dict[str, int]]) -> tuple[frozenset[int], bool]:
    values: set[int] = set()
    starred = False
    for part in expr.split(","):
        range_and_step = part.split("/")
        if len(range_and_step) > 2:
            raise ValueError(f"too many slashes: {part!r}")
        bounds = range_and_step[0].split("-")
        single = len(bounds) == 1
        star = False
        if bounds[0] in ("*", "?"):
            start, end, star = low, high, True
        else:
            start = _field_value(bounds[0], names, part)
            if len(bounds) == 1:
                end = start
            elif len(bounds) == 2:
                end = _field_value(bounds[1], names, part)
            else:
                raise ValueError(f"too many hyphens: {part!r}")
        step = 1
        if len(range_and_step) == 2:
            step = _field_value(range_and_step[1], None, part)
            if single:
                end = high
            if step > 1:
                star = False
        if start < low:
            raise ValueError(f"beginning of range ({start}) below minimum ({low}): {part}")
        if end > high:
            raise ValueError(f"end of range ({end}) above maximum ({high}): {part}")
        if start > end:
            raise ValueError(f"beginning of range ({start}) beyond end of range ({end}): {part}")
        if step == 0:
            raise ValueError(f"step of range should be a positive number: {part}")
        values.update(range(start, end + 1, step))
        starred = starred or star
    return frozenset(values), starred


def _zone(name: str) -> tzinfo:
    if name == "UTC":
        return timezone.utc
    from zoneinfo import ZoneInfo

    try:
        return ZoneInfo(name)
    except Exception as err:
        raise ValueError(f"provided bad location {name}: {err}") from err


class CronSchedule:
    """A five-field cron schedule, a ``@descriptor`` or ``@every <duration>``."""

    def __init__(self, spec: str) -> None:
        self.spec = spec
        self._tz: Optional[tzinfo] = None
        self._every: Optional[timedelta] = None
        text = spec.strip()
        if not text:
            raise ValueError("empty spec string")
        if text.startswith(("CRON_TZ=", "TZ=")):
            prefix, _, text = text.partition(" ")
            self._tz = _zone(prefix.split("=", 1)[1])
            text = text.strip()
        if text.startswith("@every "):
            delay = _parse_duration(text[len("@every ") :].strip())
            whole = max(int(delay.total_seconds()), 1)
            self._every = timedelta(seconds=whole)
            return
        if text.startswith("@"):
            if text not in _DESCRIPTORS:
                raise ValueError(f"unrecognized descriptor: {text}")
            text = _DESCRIPTORS[text]
        parts = text.split()
        if len(parts) != len(_FIELDS):
            raise ValueError(f"expected exactly {len(_FIELDS)} fields, found {len(parts)}: {text}")
        parsed = [_parse_field(part, low, high, names) for part, (_, low, high, names) in zip(parts, _FIELDS)]
        (self._minutes, _), (self._hours, _), (self._doms, dom_star), (self._months, _), (self._dows, dow_star) = parsed
        self._day_and = dom_star or dow_star

    def _day_matches(self, moment: datetime) -> bool:
        dom_match = moment.day in self._doms
        dow_match = moment.isoweekday() % 7 in self._dows
        if self._day_and:
            return dom_match and dow_match
        return dom_match or dow_match

    def next_after(self, moment: datetime) -> Optional[datetime]:
        """Return the first time strictly after ``moment`` that fits, or ``None`` if none does."""
        if self._tz is not None:
            moment = moment.astimezone(self._tz)
        if self._every is not None:
            return moment.replace(microsecond=0) + self._every
        current = moment.replace(second=0, microsecond=0) + timedelta(minutes=1)
        limit = current.year + _SEARCH_YEARS
        while current.year <= limit:
            if current.month not in self._months:
                if current.month == 12:
                    current = current.replace(year=current.year + 1, month=1, day=1, hour=0, minute=0)
                else:
                    current = current.replace(month=current.month + 1, day=1, hour=0, minute=0)
                continue
            if not self._day_matches(current):
                current = current.replace(hour=0, minute=0) + timedelta(days=1)
                continue
            if current.hour not in self._hours:
                current = current.replace(minute=0) + timedelta(hours=1)
                continue
            if current.minute not in self._minutes:
                current += timedelta(minutes=1)
                continue
            return current
        return None


def _local_now() -> datetime:
    return datetime.now().astimezone()


class Agent:
    """Runs the retention job on the schedule of its retention policy.

    ``db`` is an sqlite3 connection holding ``records`` and ``results`` tables whose
    ``updated_time`` column stores Unix seconds. A scheduled job runs on a timer
    thread, so the connection should allow use from other threads.
    """

    def __init__(
        self,
        db: sqlite3.Connection,
        policy: Optional[RetentionPolicy] = None,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.db = db
        self.policy = policy if policy is not None else RetentionPolicy()
        self.logger = logger or logging.getLogger(RESULTS_RETENTION_POLICY_AGENT)
        self._clock = clock or _local_now
        self._lock = threading.RLock()
        self._schedule: Optional[CronSchedule] = None
        self._timer: Optional[threading.Timer] = None
        self._generation = 0
        self._running = False

    def agent_on_store(self) -> Callable[[str, Any], None]:
        """Return a config-store callback that applies a new policy and restarts the schedule."""

        def callback(name: str, value: Any) -> None:
            if name != RETENTION_POLICY_CONFIG_NAME:
                return
            if not isinstance(value, RetentionPolicy):
                self.logger.error("Failed to do type assertion for extracting retention policy config")
                return
            with self._lock:
                self.policy = RetentionPolicy(run_at=value.run_at, max_retention=value.max_retention)
            self.stop()
            self.start()

        return callback

    def start(self) -> None:
        """Schedule the job by the policy's ``run_at``; raises ValueError on a bad schedule."""
        with self._lock:
            schedule = CronSchedule(self.policy.run_at)
            self._schedule = schedule
            self._generation += 1
            self._running = True
            self._arm(self._generation)

    def stop(self) -> None:
        """Stop the schedule; a job already running finishes."""
        with self._lock:
            self._running = False
            self._generation += 1
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _arm(self, generation: int) -> None:
        if self._schedule is None:
            return
        now = self._clock()
        upcoming = self._schedule.next_after(now)
        if upcoming is None:
            self.logger.warning("retention schedule %r never fires", self.policy.run_at)
            return
        delay = max((upcoming - now).total_seconds(), 0.0)
        timer = threading.Timer(delay, self._fire, args=(generation,))
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _fire(self, generation: int) -> None:
        with self._lock:
            if not self._running or generation != self._generation:
                return
        self.job()
        with self._lock:
            if self._running and generation == self._generation:
                self._arm(generation)

    def _delete_older(self, table: str, cutoff: float) -> None:
        cursor = self.db.cursor()
        try:
            cursor.execute(f"DELETE FROM {table} WHERE updated_time < ?", (cutoff,))
            self.db.commit()
        finally:
            cursor.close()

    def job(self) -> None:
        """Delete every record and result not updated within the retention period."""
        with self._lock:
            policy = self.policy
            started = self._clock()
            cutoff = started - policy.max_retention
            self.logger.info(
                "retention job started at: %s, deleting data older than %s, retention policy: %s",
                started,
                cutoff,
                policy,
            )
            for table, kind in (("records", "record"), ("results", "result")):
                try:
                    self._delete_older(table, cutoff.timestamp())
                except sqlite3.Error as err:
                    self.logger.error("failed to delete %s %s", kind, err)
            self.logger.info("retention job finished at: %s", self._clock())