"""Cronstack - run cron-scheduled Python jobs in isolated worker processes."""

__app_name__ = "cronstack"
__version__ = "0.1.0"

from cronstack.services.definition import ServiceDefinition, define_service

__all__ = [
    "__app_name__",
    "__version__",
    "ServiceDefinition",
    "define_service",
]
