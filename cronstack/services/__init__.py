"""Job file definitions and discovery."""

from cronstack.services.definition import ServiceDefinition, define_service
from cronstack.services.loader import (
    ServicePath,
    find_service_paths,
    get_services_base_dir,
    load_descriptors,
    load_service,
)

__all__ = [
    "ServiceDefinition",
    "ServicePath",
    "define_service",
    "find_service_paths",
    "get_services_base_dir",
    "load_descriptors",
    "load_service",
]
