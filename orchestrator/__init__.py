"""Core orchestrator package: service discovery, config generation, subprocess scheduling."""

from .errors import (
    AggregateRunFailure,
    ConfigNotFound,
    DeploymentError,
    MultiError,
    ServiceExists,
    ServiceFilterEmpty,
    SubprocessSpawnFailure,
    TargetFolderMissing,
)
from .locator import find_root_descriptor, list_services, load_service, select_services
from .materialize import add_service, generate_all, merge_service_config
from .models import Done, ExecutionOptions, Failure, Progress, RunOutcome, ServiceDescriptor, ServiceState
from .offline import run_offline
from .process import DeploymentProcess
from .scheduler import Scheduler, run_command

__all__ = [
    "AggregateRunFailure",
    "ConfigNotFound",
    "DeploymentError",
    "DeploymentProcess",
    "Done",
    "ExecutionOptions",
    "Failure",
    "MultiError",
    "Progress",
    "RunOutcome",
    "Scheduler",
    "ServiceDescriptor",
    "ServiceExists",
    "ServiceFilterEmpty",
    "ServiceState",
    "SubprocessSpawnFailure",
    "TargetFolderMissing",
    "add_service",
    "find_root_descriptor",
    "generate_all",
    "list_services",
    "load_service",
    "merge_service_config",
    "run_command",
    "run_offline",
    "select_services",
]
