"""Registry of live job records, keyed by job name."""

import logging
from typing import Dict, Iterable, Iterator, List, Optional

from cronstack.exceptions import DuplicateNameError, InvalidScheduleError
from cronstack.scheduler.models import JobDescriptor, JobRecord

logger = logging.getLogger(__name__)


def build_records(
    descriptors: Iterable[JobDescriptor],
    time_zone: str = "UTC",
    misfire_grace_time: Optional[int] = 300,
    skip_invalid: bool = False,
) -> List[JobRecord]:
    """Validate descriptors and build records for them.

    Nothing live is touched here, so a failure leaves every existing
    registry as it was.

    Args:
        descriptors: Job descriptors to validate
        time_zone: Time zone for schedule evaluation
        misfire_grace_time: Seconds a late tick may still fire
        skip_invalid: Log and drop jobs with an invalid schedule instead
            of failing the whole batch

    Returns:
        One record per accepted descriptor

    Raises:
        DuplicateNameError: If two descriptors share a name
        InvalidScheduleError: If a schedule is invalid and skip_invalid is False
    """
    records: List[JobRecord] = []
    seen: set[str] = set()

    for descriptor in descriptors:
        if descriptor.name in seen:
            raise DuplicateNameError(descriptor.name)
        seen.add(descriptor.name)

        try:
            records.append(
                JobRecord.from_descriptor(
                    descriptor,
                    time_zone=time_zone,
                    misfire_grace_time=misfire_grace_time,
                )
            )
        except InvalidScheduleError as e:
            if not skip_invalid:
                raise
            logger.error(f"Skipping job {descriptor.name}: {e.message}")

    return records


class JobRegistry:
    """Authoritative map of job name to JobRecord.

    Names are unique. Batches are added atomically: either every record
    of a batch is accepted or none is.
    """

    def __init__(self) -> None:
        self._records: Dict[str, JobRecord] = {}

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[JobRecord]:
        return iter(list(self._records.values()))

    def __contains__(self, name: object) -> bool:
        return name in self._records

    @property
    def names(self) -> List[str]:
        return list(self._records.keys())

    @property
    def records(self) -> List[JobRecord]:
        return list(self._records.values())

    @property
    def active_records(self) -> List[JobRecord]:
        """Records with at least one running worker."""
        return [r for r in self._records.values() if not r.is_idle]

    def get(self, name: str) -> Optional[JobRecord]:
        return self._records.get(name)

    def add_all(self, records: Iterable[JobRecord]) -> List[str]:
        """Add a batch of records.

        Raises:
            DuplicateNameError: If a name repeats within the batch or is
                already registered; nothing is added in that case
        """
        batch = list(records)
        names: set[str] = set()
        for record in batch:
            if record.name in names or record.name in self._records:
                raise DuplicateNameError(record.name)
            names.add(record.name)

        for record in batch:
            self._records[record.name] = record
        return [record.name for record in batch]

    def replace(self, records: Iterable[JobRecord]) -> List[str]:
        """Swap the whole registry for a new set of records."""
        batch = list(records)
        new_records: Dict[str, JobRecord] = {}
        for record in batch:
            if record.name in new_records:
                raise DuplicateNameError(record.name)
            new_records[record.name] = record

        self._records = new_records
        return list(new_records.keys())

    def remove(self, name: str) -> Optional[JobRecord]:
        return self._records.pop(name, None)

    def clear(self) -> None:
        self._records.clear()

    def all_idle(self) -> bool:
        return all(r.is_idle for r in self._records.values())
