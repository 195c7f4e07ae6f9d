"""
scheduler.py
------------
Runs one deployment-tool command on every selected sub-service.

Serial mode handles the sub-services one after another. Parallel mode parses
every descriptor first (one at a time, the parser is not safe to interleave)
and then starts all subprocesses at once, optionally capped by
``max_parallel``.

A failing sub-service never stops the others. Failures are collected and,
once every sub-service has finished, reported together with
AggregateRunFailure.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from rich.markup import escape

from common.terminal import TerminalRenderer
from connectors.host_interface import HostFramework

from .errors import AggregateRunFailure
from .locator import load_service, select_services
from .materialize import generate_all
from .models import ExecutionOptions, Failure, Progress, RunOutcome, ServiceDescriptor, ServiceState
from .process import PROGRESS_PREFIX, DeploymentProcess

logger = logging.getLogger(__name__)

SPINNER_FRAMES = ['⠋', '⠙', '⠹', '⠸', '⠼', '⠴', '⠦', '⠧', '⠇', '⠏']
SPINNER_INTERVAL = 0.05
SUCCESS = '✓'
FAIL = '×'


@dataclass
class _Status:
    index: int
    name: str
    frame: int = 0

    @property
    def label(self) -> str:
        return f"[bold]{escape(self.name)}[/bold]"


class Scheduler:
    """Drives a DeploymentProcess per sub-service and aggregates the outcome.

    Args:
        host: the hosting framework (root descriptor, logging, parsing).
        commands: deployment-tool commands, e.g. ``["deploy"]``.
        options: per-run execution options.
        renderer: live status display; created from ``options`` if omitted.
        executable: deployment tool to run, resolved per sub-service if omitted.
    """

    def __init__(
        self,
        host: HostFramework,
        commands: Sequence[str],
        options: ExecutionOptions,
        renderer: Optional[TerminalRenderer] = None,
        executable: Optional[str] = None,
        process_factory: Callable[..., DeploymentProcess] = DeploymentProcess,
    ):
        self.host = host
        self.commands = list(commands)
        self.options = options
        self.renderer = renderer or TerminalRenderer(truncate=options.parallel)
        self.executable = executable
        self.process_factory = process_factory
        self.states: dict[str, ServiceState] = {}
        self.outcome = RunOutcome()

    async def run(self) -> RunOutcome:
        """Run the command everywhere. Raises AggregateRunFailure if anything failed."""
        mode = "parallel" if self.options.parallel else "series"
        self.host.log(f"Executing {' '.join(self.commands)} in {mode}")
        stubs = select_services(self.host, self.options.service_filter, self.options.strict_filter)
        for stub in stubs:
            self.states[stub.name] = ServiceState.PENDING
        try:
            if self.options.parallel:
                services = [self._load(stub) for stub in stubs]
                limit = self.options.max_parallel
                semaphore = asyncio.Semaphore(limit) if limit else None
                await asyncio.gather(*(self._run_service(service, semaphore) for service in services))
            else:
                for stub in stubs:
                    await self._run_service(self._load(stub))
        finally:
            if not self.options.passthrough:
                self.renderer.clear()
        return self._finish()

    def _load(self, stub: ServiceDescriptor) -> ServiceDescriptor:
        service = load_service(self.host, stub)
        logger.info("Loaded %s (%d functions)", service.name, len(service.config.get("functions") or {}))
        return service

    async def _run_service(self, service: ServiceDescriptor, semaphore: Optional[asyncio.Semaphore] = None) -> None:
        status = None
        if not self.options.passthrough:
            status = _Status(index=-1, name=service.name)
            status.index = self.renderer.push_line(f"  {status.label}: starting service")
        if semaphore is None:
            await self._execute(service, status)
            return
        async with semaphore:
            await self._execute(service, status)

    async def _execute(self, service: ServiceDescriptor, status: Optional[_Status]) -> None:
        name = service.name
        self.states[name] = ServiceState.RUNNING
        if status is None:
            self.host.log(f"Attempting to run '{' '.join(self.commands)}' on service {name}")
        flags = {**self.host.current_options(), **self.options.passthrough_flags}
        proc = self.process_factory(
            self.commands, flags, cwd=service.directory,
            executable=self.executable, passthrough=self.options.passthrough,
        )
        spinner = None
        if status is not None and self.renderer.is_terminal:
            spinner = asyncio.ensure_future(self._spin(status))
        try:
            async for event in proc.events():
                if isinstance(event, Progress):
                    if status is not None:
                        self._show_progress(status, event.text)
                elif isinstance(event, Failure):
                    self._record_failure(name, event.error, status)
                else:
                    self._record_success(name, status)
        finally:
            if spinner is not None:
                spinner.cancel()

    async def _spin(self, status: _Status) -> None:
        while True:
            await asyncio.sleep(SPINNER_INTERVAL)
            status.frame = (status.frame + 1) % len(SPINNER_FRAMES)
            self.renderer.overwrite_line(status.index, 0, SPINNER_FRAMES[status.frame])

    def _show_progress(self, status: _Status, text: str) -> None:
        detail = text[len(PROGRESS_PREFIX):] if text.startswith(PROGRESS_PREFIX) else f" {text}"
        self.renderer.update_line(status.index, f"{SPINNER_FRAMES[status.frame]} {status.label}:{escape(detail)}")

    def _record_success(self, name: str, status: Optional[_Status]) -> None:
        self.states[name] = ServiceState.SUCCEEDED
        self.outcome.record_success(name)
        logger.info("Service %s succeeded", name)
        if status is not None:
            self.renderer.update_line(status.index, f"{SUCCESS} {status.label}: [green]Successful[/green]")

    def _record_failure(self, name: str, error: Exception, status: Optional[_Status]) -> None:
        self.states[name] = ServiceState.FAILED
        self.outcome.record_failure(name, error)
        logger.error("Service %s failed: %s", name, error)
        if status is not None:
            self.renderer.update_line(status.index, f"{FAIL} {status.label}: [red]Failed[/red]")

    def _finish(self) -> RunOutcome:
        failures = self.outcome.failures
        if failures:
            for name, error in failures.items():
                self.host.log(f"Service {name} Error:")
                self.host.log(str(error))
            raise AggregateRunFailure(failures)
        self.host.log("Multi ran successfully!")
        return self.outcome


async def run_command(
    host: HostFramework,
    commands: Sequence[str],
    options: ExecutionOptions,
    renderer: Optional[TerminalRenderer] = None,
    executable: Optional[str] = None,
) -> RunOutcome:
    """Generate config and links, then run ``commands`` on every selected sub-service."""
    generate_all(host, options.service_filter, options.strict_filter)
    scheduler = Scheduler(host, commands, options, renderer=renderer, executable=executable)
    return await scheduler.run()
