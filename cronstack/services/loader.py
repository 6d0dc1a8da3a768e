"""Discovery and loading of job files.

Job files live in ``services/`` (or ``src/services/``) under the project
directory. Each ``*.py`` file, or each package directory with an
``__init__.py``, is one job named after the file stem or directory.
"""

import importlib.util
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from types import ModuleType
from typing import List, Optional, Sequence

from cronstack.exceptions import ServiceDiscoveryError
from cronstack.scheduler.models import JobDescriptor
from cronstack.services.definition import ServiceDefinition

logger = logging.getLogger(__name__)

SERVICE_ATTRIBUTE = "service"
MODULE_PREFIX = "cronstack_services"


@dataclass
class ServicePath:
    """Location of one job file."""

    name: str
    path: Path


def get_services_base_dir(cwd: Path) -> Path:
    """Return the directory that holds the job files.

    Raises:
        ServiceDiscoveryError: If both ``src/services`` and ``services`` exist
    """
    src_dir = cwd / "src" / "services"
    plain_dir = cwd / "services"

    if src_dir.is_dir() and plain_dir.is_dir():
        raise ServiceDiscoveryError(
            'Both "src/services" and "services" directories exist. '
            "Please rename one of them to avoid conflicts.",
            details={"cwd": str(cwd)},
        )
    if src_dir.is_dir():
        return src_dir
    return plain_dir


def find_service_paths(cwd: Path, names: Optional[Sequence[str]] = None) -> List[ServicePath]:
    """List job files, optionally restricted to the given names."""
    base_dir = get_services_base_dir(cwd)
    if not base_dir.is_dir():
        return []

    paths: List[ServicePath] = []
    for entry in sorted(base_dir.iterdir()):
        if entry.name.startswith(("_", ".")):
            continue
        if entry.is_file() and entry.suffix == ".py":
            paths.append(ServicePath(name=entry.stem, path=entry))
        elif entry.is_dir() and (entry / "__init__.py").is_file():
            paths.append(ServicePath(name=entry.name, path=entry / "__init__.py"))

    if names:
        wanted = set(names)
        paths = [p for p in paths if p.name in wanted]

    return paths


def _import_file(name: str, path: Path) -> ModuleType:
    module_name = f"{MODULE_PREFIX}.{name}"
    search_locations = [str(path.parent)] if path.name == "__init__.py" else None

    spec = importlib.util.spec_from_file_location(
        module_name, path, submodule_search_locations=search_locations
    )
    if spec is None or spec.loader is None:
        raise ServiceDiscoveryError(f"Cannot import service {name} from {path}")

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        sys.modules.pop(module_name, None)
        raise ServiceDiscoveryError(
            f"Failed to load service {name} from {path}: {e}",
            details={"error": type(e).__name__},
        ) from e
    return module


def load_service(name: str, path: Path) -> ServiceDefinition:
    """Import a job file and return its service definition.

    The definition is read from the module's ``service`` attribute, or
    from the only ServiceDefinition in the module if that is missing.

    Raises:
        ServiceDiscoveryError: If the file cannot be imported or does not
            define a service
    """
    module = _import_file(name, Path(path))

    definition = getattr(module, SERVICE_ATTRIBUTE, None)
    if definition is None:
        candidates = [v for v in vars(module).values() if isinstance(v, ServiceDefinition)]
        if len(candidates) == 1:
            definition = candidates[0]

    if definition is None:
        raise ServiceDiscoveryError(
            f"No service found in {path}. Services must be created using "
            f'"define_service" and assigned to "{SERVICE_ATTRIBUTE}".'
        )
    if not isinstance(definition, ServiceDefinition) or not callable(definition.run):
        raise ServiceDiscoveryError(f"Service in {path} is not valid.")

    return definition


def load_descriptors(cwd: Path, names: Optional[Sequence[str]] = None) -> List[JobDescriptor]:
    """Discover job files and build a descriptor for each.

    Raises:
        ServiceDiscoveryError: If no job files are found or one fails to load
    """
    paths = find_service_paths(cwd, names)
    if not paths:
        raise ServiceDiscoveryError(f'No services found in "{cwd}" directory.')

    descriptors: List[JobDescriptor] = []
    for service_path in paths:
        definition = load_service(service_path.name, service_path.path)
        try:
            descriptors.append(
                definition.to_descriptor(service_path.name, str(service_path.path.resolve()))
            )
        except ValueError as e:
            raise ServiceDiscoveryError(f"Service in {service_path.path} is not valid: {e}") from e

    logger.debug(f"Loaded {len(descriptors)} service(s) from {cwd}")
    return descriptors
