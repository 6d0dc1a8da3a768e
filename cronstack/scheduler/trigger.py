"""Cron trigger for a single job.

A JobTrigger turns a cron expression into tick callbacks. Parsing and
next-fire computation are delegated to APScheduler's CronTrigger; firing
goes through the AsyncIOScheduler owned by the supervisor, so every tick
runs on the supervisor's event loop.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional
from uuid import uuid4

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from cron_descriptor import (
    ExpressionDescriptor,
    FormatException,
    MissingFieldException,
    Options,
    WrongArgumentException,
)

from cronstack.exceptions import InvalidScheduleError

logger = logging.getLogger(__name__)

TickCallback = Callable[[], None]

# Cron weekday numbers: 0 and 7 are Sunday. APScheduler counts from Monday,
# so numeric weekdays are passed on as names.
WEEKDAY_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat", "sun")


def _weekday_number(value: str) -> int:
    number = int(value)
    if not 0 <= number <= 7:
        raise ValueError(f"weekday value {number} is out of range (0-7)")
    return number


def _translate_weekday_item(item: str) -> str:
    """Translate one comma-separated weekday item to APScheduler syntax."""
    base, _, step = item.partition("/")
    if base != "*" and not base.replace("-", "").isdigit():
        # Names (mon-fri) mean the same thing to both
        return item

    if base == "*":
        if not step:
            return item
        first, last = 0, 6
    elif "-" in base:
        first_str, last_str = base.split("-", 1)
        first, last = _weekday_number(first_str), _weekday_number(last_str)
        if first > last:
            raise ValueError(f"weekday range {base} is reversed")
    else:
        first = _weekday_number(base)
        last = 6 if step else first

    increment = int(step) if step else 1
    if increment < 1:
        raise ValueError(f"weekday step {step} must be positive")

    names: List[str] = []
    for number in range(first, last + 1, increment):
        name = WEEKDAY_NAMES[number]
        if name not in names:
            names.append(name)
    return ",".join(names)


def translate_weekday_field(field: str) -> str:
    """Rewrite a cron weekday field for APScheduler's ``day_of_week``.

    ``1-5`` becomes ``mon,tue,wed,thu,fri``, ``0`` and ``7`` become
    ``sun``. Name-based values are passed through unchanged.

    Raises:
        ValueError: If a numeric value is out of range
    """
    return ",".join(_translate_weekday_item(item) for item in field.split(","))


def parse_cron_expression(
    schedule: str,
    time_zone: str = "UTC",
    name: Optional[str] = None,
) -> CronTrigger:
    """Parse a cron schedule string into a CronTrigger.

    Supports both 5-part (minute hour day month weekday) and
    6-part (second minute hour day month weekday) cron formats.

    Args:
        schedule: Cron schedule string
        time_zone: Time zone the expression is evaluated in
        name: Job name, used only for error reporting

    Returns:
        CronTrigger instance

    Raises:
        InvalidScheduleError: If the expression or time zone is invalid
    """
    parts = schedule.split() if isinstance(schedule, str) else []

    if len(parts) == 6:
        second, minute, hour, day, month, weekday = parts
    elif len(parts) == 5:
        second = "0"
        minute, hour, day, month, weekday = parts
    else:
        raise InvalidScheduleError(
            str(schedule),
            "expected 5 or 6 parts (minute hour day month weekday "
            "or second minute hour day month weekday)",
            name=name,
        )

    try:
        return CronTrigger(
            second=second,
            minute=minute,
            hour=hour,
            day=day,
            month=month,
            day_of_week=translate_weekday_field(weekday),
            timezone=time_zone,
        )
    except (ValueError, KeyError) as e:
        # KeyError covers unknown time zone names
        raise InvalidScheduleError(schedule, str(e), name=name) from e


def describe_schedule(schedule: str) -> str:
    """Describe a cron expression in words, e.g. "Every 5 minutes".

    Falls back to the expression itself if it cannot be described.
    """
    options = Options()
    options.use_24hour_time_format = True
    try:
        return ExpressionDescriptor(schedule, options).get_description()
    except (FormatException, MissingFieldException, WrongArgumentException, ValueError) as e:
        logger.debug(f"Cannot describe schedule {schedule!r}: {e}")
        return schedule


class JobTrigger:
    """Fires a tick callback at every occurrence of a cron expression.

    The expression is validated on construction. ``start()`` registers
    the trigger with a running AsyncIOScheduler; ``stop()`` removes it.
    A stopped trigger is finished for good and cannot be started again.

    Example:
        trigger = JobTrigger("*/5 * * * * *")
        trigger.start(scheduler, lambda: print("tick"))
        ...
        trigger.stop()
    """

    def __init__(
        self,
        schedule: str,
        time_zone: str = "UTC",
        name: Optional[str] = None,
        misfire_grace_time: Optional[int] = 300,
    ) -> None:
        self.schedule = schedule
        self.time_zone = time_zone
        self.name = name or "job"
        self._cron = parse_cron_expression(schedule, time_zone, name=name)
        self._misfire_grace_time = misfire_grace_time
        self._job_id = f"{self.name}:{uuid4().hex[:8]}"
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._on_tick: Optional[TickCallback] = None
        self._started = False
        self._stopped = False
        self._description: Optional[str] = None

    @property
    def running(self) -> bool:
        """Whether the trigger is currently admitting ticks."""
        return self._started and not self._stopped

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def cron(self) -> CronTrigger:
        return self._cron

    @property
    def description(self) -> str:
        """Human readable form of the schedule."""
        if self._description is None:
            self._description = describe_schedule(self.schedule)
        return self._description

    def start(self, scheduler: AsyncIOScheduler, on_tick: TickCallback) -> None:
        """Begin firing ``on_tick`` at each occurrence.

        Missed occurrences are coalesced into a single tick, so a paused
        process never receives a burst of duplicate ticks.

        Raises:
            RuntimeError: If the trigger was already started or stopped
        """
        if self._stopped:
            raise RuntimeError(f"Trigger for job {self.name} was stopped")
        if self._started:
            raise RuntimeError(f"Trigger for job {self.name} already started")

        self._scheduler = scheduler
        self._on_tick = on_tick
        scheduler.add_job(
            self._fire,
            trigger=self._cron,
            id=self._job_id,
            name=self.name,
            coalesce=True,
            max_instances=1,
            misfire_grace_time=self._misfire_grace_time,
            replace_existing=True,
        )
        self._started = True
        logger.debug(f"Trigger for job {self.name} started ({self.schedule})")

    def stop(self) -> None:
        """Cancel all future ticks. Safe to call more than once."""
        if self._stopped:
            return
        self._stopped = True

        if self._scheduler is not None:
            try:
                self._scheduler.remove_job(self._job_id)
            except JobLookupError:
                # Already gone together with the scheduler
                pass
            self._scheduler = None
        logger.debug(f"Trigger for job {self.name} stopped")

    def next_occurrence(self, now: Optional[datetime] = None) -> datetime:
        """Return the first occurrence strictly later than ``now``.

        Args:
            now: Reference time (defaults to the current time). Naive
                datetimes are interpreted as UTC.

        Returns:
            Time zone aware datetime of the next occurrence
        """
        if now is None:
            now = datetime.now(timezone.utc)
        elif now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)

        # get_next_fire_time may return ``now`` itself on an exact match
        next_time = self._cron.get_next_fire_time(None, now + timedelta(microseconds=1))
        if next_time is None:
            raise InvalidScheduleError(self.schedule, "expression has no future occurrences", name=self.name)
        return next_time

    async def _fire(self) -> None:
        # Coroutine so AsyncIOExecutor runs it on the loop, not in a thread.
        # stop() removes the scheduler job; a tick already submitted still runs.
        if self._on_tick is None:
            return
        self._on_tick()
