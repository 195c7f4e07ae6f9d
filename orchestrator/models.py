"""Pydantic models and plain records for the orchestration domain."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Optional, Union

import json
import yaml
from box import Box
from pydantic import BaseModel, ConfigDict, Field, field_validator


class ServiceDescriptor(BaseModel):
    """One sub-service selected for a run. Identity is ``name`` (the directory basename)."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str = Field(..., min_length=1)
    directory: Path
    config: Box = Field(default_factory=lambda: coerce_config(None))

    @field_validator("config", mode="before")
    @classmethod
    def _as_box(cls, value: Any) -> Box:
        return coerce_config(value)

    @property
    def descriptor_path(self) -> Path:
        return self.directory / SERVICE_DESCRIPTOR


class ExecutionOptions(BaseModel):
    """Per-invocation settings, read-only for the duration of a run."""

    model_config = ConfigDict(frozen=True)

    service_filter: Optional[frozenset[str]] = Field(None, description="Only run these sub-services")
    parallel: bool = False
    passthrough_flags: dict[str, Optional[str]] = Field(
        default_factory=dict, description="Options forwarded to the deployment tool as --key value"
    )
    strict_filter: bool = Field(True, description="Fail when the filter selects no sub-service")
    max_parallel: Optional[int] = Field(None, ge=1, description="Cap on concurrent subprocesses")
    passthrough: bool = Field(False, description="Stream tool output instead of live status lines")

    @field_validator("service_filter", mode="before")
    @classmethod
    def _split_names(cls, value: Any) -> Optional[frozenset[str]]:
        """Accept ``"a,b"`` as well as any iterable of names. Empty means no filter."""
        if value is None:
            return None
        raw = value.split(",") if isinstance(value, str) else list(value)
        names = frozenset(name.strip() for name in raw if name and name.strip())
        return names or None


class ServiceState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class RunOutcome:
    """Per-service results, filled in as each subprocess terminates."""

    per_service: dict[str, Optional[Exception]] = field(default_factory=dict)

    def record_success(self, name: str) -> None:
        self.per_service[name] = None

    def record_failure(self, name: str, error: Exception) -> None:
        self.per_service[name] = error

    @property
    def succeeded(self) -> list[str]:
        return [name for name, error in self.per_service.items() if error is None]

    @property
    def failures(self) -> dict[str, Exception]:
        return {name: error for name, error in self.per_service.items() if error is not None}

    @property
    def ok(self) -> bool:
        return not self.failures


# ---------------------------------------------------------------------------
# process events


@dataclass(frozen=True)
class Progress:
    text: str


@dataclass(frozen=True)
class Failure:
    error: Exception


@dataclass(frozen=True)
class Done:
    pass


ProcessEvent = Union[Progress, Failure, Done]

# ---------------------------------------------------------------------------
# helpers

SERVICE_DESCRIPTOR = "service.yml"


def coerce_config(value: Any) -> Box:
    """Normalize parsed descriptor content into a dot-access Box."""
    if isinstance(value, Box):
        return value
    payload: Mapping[str, Any]
    if value is None:
        payload = {}
    elif isinstance(value, Mapping):
        payload = value
    elif isinstance(value, (str, bytes)):
        payload = load_text_payload(value)
    elif isinstance(value, Path):
        payload = load_text_payload(value.read_text())
    else:
        raise TypeError("Unsupported value for a service configuration")
    return Box(payload, default_box=True)


class DescriptorLoader(yaml.SafeLoader):
    """SafeLoader that also accepts CloudFormation short-form tags (``!Ref``, ``!GetAtt`` ...)."""


def _intrinsic_function(loader: yaml.SafeLoader, suffix: str, node: yaml.Node) -> dict[str, Any]:
    value: Any
    if isinstance(node, yaml.ScalarNode):
        value = loader.construct_scalar(node)
    elif isinstance(node, yaml.SequenceNode):
        value = loader.construct_sequence(node, deep=True)
    else:
        value = loader.construct_mapping(node, deep=True)
    if suffix in ("Ref", "Condition"):
        return {suffix: value}
    if suffix == "GetAtt" and isinstance(value, str):
        value = value.split(".", 1)
    return {f"Fn::{suffix}": value}


DescriptorLoader.add_multi_constructor("!", _intrinsic_function)


def load_text_payload(raw: str | bytes) -> dict[str, Any]:
    """Interpret raw text as YAML first, falling back to JSON."""
    text = raw.decode() if isinstance(raw, bytes) else raw
    try:
        payload = yaml.load(text, Loader=DescriptorLoader) or {}
    except yaml.YAMLError:
        payload = json.loads(text)
    if not isinstance(payload, dict):
        raise ValueError("Descriptor must contain a mapping at the top level")
    return payload


__all__ = [
    "Done",
    "ExecutionOptions",
    "Failure",
    "Progress",
    "ProcessEvent",
    "RunOutcome",
    "ServiceDescriptor",
    "ServiceState",
    "coerce_config",
    "load_text_payload",
]
