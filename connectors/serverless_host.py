"""
serverless_host.py
------------------
The host the orchestrator runs in: a Serverless project on disk.

Reads the root ``serverless.yml`` once, parses sub-service descriptors, logs
through the shared print/log helpers, and runs further Serverless commands
(``offline:start``) in the project root.
"""

import logging
from pathlib import Path
from typing import Any, Mapping, Optional

from box import Box
from rich.markup import escape

from common.app_setup import print_and_log
from connectors.host_interface import HostFramework
from orchestrator.locator import find_root_descriptor
from orchestrator.models import Failure, coerce_config
from orchestrator.process import DeploymentProcess

logger = logging.getLogger(__name__)


class ServerlessHost(HostFramework):
    """
    Host backed by a Serverless project directory.

    Args:
        root_dir: directory holding serverless.yml (defaults to the current directory).
        options: command-line options forwarded to the deployment tool,
            e.g. {"stage": "dev", "region": None}. None values are dropped.
        executable: deployment tool for lifecycle commands (resolved if not set).

    Raises ConfigNotFound when the directory has no root descriptor.
    """

    def __init__(self, root_dir: Optional[Path] = None, options: Optional[Mapping[str, Optional[str]]] = None, executable: Optional[str] = None):
        self._root_dir = Path(root_dir or Path.cwd()).resolve()
        self._options = dict(options or {})
        self.executable = executable
        self.descriptor_path = find_root_descriptor(self._root_dir)
        self._service = self.parse_descriptor(self.descriptor_path)

    @property
    def service(self) -> Box:
        return self._service

    @property
    def root_dir(self) -> Path:
        return self._root_dir

    def log(self, text: str) -> None:
        print_and_log(escape(text))

    def current_options(self) -> dict[str, Optional[str]]:
        return dict(self._options)

    def parse_descriptor(self, path: Path) -> Box:
        logger.debug("Parsing %s", path)
        return coerce_config(Path(path))

    async def invoke_lifecycle(self, name: str, options: Optional[Mapping[str, Any]] = None) -> None:
        """Run ``serverless <name split on ':'>`` in the project root, output passed through."""
        flags = {**self._options, **dict(options or {})}
        proc = DeploymentProcess(name.split(":"), flags, cwd=self._root_dir, executable=self.executable, passthrough=True)
        self.log(f"Invoking {name}")
        async for event in proc.events():
            if isinstance(event, Failure):
                raise event.error
