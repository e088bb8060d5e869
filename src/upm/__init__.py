"""upm - Universal Project Manager automation toolkit."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("upm")
except PackageNotFoundError:
    __version__ = "0+local"

from upm.actions import ActionContext, ActionRegistry, default_registry
from upm.builder import CachedBuild
from upm.cache import BuildCache
from upm.client import DependencyServiceClient
from upm.config import UpmConfig
from upm.deps import DependencyGraph
from upm.exceptions import (
    UpmActionError,
    UpmApiError,
    UpmCacheError,
    UpmConfigError,
    UpmCycleError,
    UpmError,
    UpmJobError,
    UpmReportError,
    UpmTaskNotFoundError,
    UpmTransportError,
)
from upm.orchestrator import Orchestrator, load_script_table, load_workflow, quick_jobs
from upm.reports import ReportWriter

__all__ = [
    "__version__",
    "ActionContext",
    "ActionRegistry",
    "BuildCache",
    "CachedBuild",
    "DependencyGraph",
    "DependencyServiceClient",
    "Orchestrator",
    "ReportWriter",
    "UpmActionError",
    "UpmApiError",
    "UpmCacheError",
    "UpmConfig",
    "UpmConfigError",
    "UpmCycleError",
    "UpmError",
    "UpmJobError",
    "UpmReportError",
    "UpmTaskNotFoundError",
    "UpmTransportError",
    "default_registry",
    "load_script_table",
    "load_workflow",
    "quick_jobs",
]
