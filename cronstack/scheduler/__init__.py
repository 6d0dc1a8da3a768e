"""Cron scheduling and job supervision."""

from cronstack.scheduler.models import (
    ExecutionResult,
    JobDescriptor,
    JobRecord,
    JobState,
    JobStatusInfo,
)
from cronstack.scheduler.trigger import JobTrigger, parse_cron_expression
from cronstack.scheduler.registry import JobRegistry, build_records
from cronstack.scheduler.supervisor import DrainResult, Supervisor

__all__ = [
    "DrainResult",
    "ExecutionResult",
    "JobDescriptor",
    "JobRecord",
    "JobRegistry",
    "JobState",
    "JobStatusInfo",
    "JobTrigger",
    "Supervisor",
    "build_records",
    "parse_cron_expression",
]
