"""Exceptions raised while orchestrating sub-services."""

from __future__ import annotations

import logging
from typing import Mapping

mylogger = logging.getLogger(__name__)


class MultiError(Exception):
    """Base exception with a message. Optionally logged when raised."""

    def __init__(self, message: str = "A multi-service error occurred", log: bool = False):
        self.message = message
        super().__init__(self.message)
        if log:
            mylogger.error(message)


class ConfigNotFound(MultiError):
    """No root serverless descriptor in the project directory."""


class TargetFolderMissing(MultiError):
    """Services root is missing while specific services were requested."""


class ServiceFilterEmpty(MultiError):
    """The service filter did not match any sub-service."""


class ServiceExists(MultiError):
    """A sub-service with that name already has a descriptor."""


class SubprocessSpawnFailure(MultiError):
    """The deployment tool could not be started at all."""


class DeploymentError(MultiError):
    """The deployment tool printed its fatal error banner (or failed in pass-through mode)."""

    def __init__(self, lines: list[str], log: bool = False):
        self.lines = list(lines)
        super().__init__("\n".join(self.lines), log=log)


class AggregateRunFailure(MultiError):
    """One or more sub-services failed. Raised once every sub-service has finished."""

    def __init__(self, failures: Mapping[str, Exception], log: bool = False):
        self.failures = dict(failures)
        details = "\n".join(f"Service {name} Error:\n{error}" for name, error in self.failures.items())
        names = ", ".join(self.failures)
        super().__init__(f"Serverless Multi Failed ({names})\n{details}", log=log)
