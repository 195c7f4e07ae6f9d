"""
process.py
----------
Runs the deployment tool for one sub-service and turns its output into events.

    proc = DeploymentProcess(["deploy"], {"stage": "dev"}, cwd="services/billing")
    async for event in proc.events():
        ...   # Progress(...)*, then exactly one Done() or Failure(...)

Success or failure is decided from the tool's output, not from its exit
code: the tool is known to exit with a misleading status. A line containing
the fatal error banner switches the run to failed and every line from there
on becomes part of the error.
"""

from __future__ import annotations

import asyncio
import codecs
import json
import logging
import os
import re
from pathlib import Path
from typing import AsyncIterator, Mapping, Optional, Pattern, Sequence

from .errors import DeploymentError, SubprocessSpawnFailure
from .models import Done, Failure, ProcessEvent, Progress

logger = logging.getLogger(__name__)

TOOL_NAME = "serverless"
EXECUTABLE_ENV = "SLS_MULTI_BIN"
ERROR_BANNER = re.compile(r"Error ---")
PROGRESS_PREFIX = "Serverless:"

LINE_BREAK = re.compile(r"\r\n|\r|\n")
CHUNK_SIZE = 64 * 1024


def option_flags(options: Optional[Mapping[str, Optional[str]]]) -> list[str]:
    """``{"stage": "dev", "region": None}`` -> ``["--stage", "dev"]``."""
    flags: list[str] = []
    for key, value in (options or {}).items():
        if value is None:
            continue
        flags += [f"--{key}", str(value)]
    return flags


def resolve_executable(start_dir: Optional[str | os.PathLike[str]] = None, tool: str = TOOL_NAME) -> str:
    """Locate the deployment tool. Never raises.

    $SLS_MULTI_BIN wins; then a copy installed under ``node_modules`` of
    ``start_dir`` or any parent (its ``bin`` entry read from package.json);
    finally the bare tool name, left to PATH lookup.
    """
    override = os.environ.get(EXECUTABLE_ENV)
    if override:
        return override
    try:
        local = _local_install(Path(start_dir or Path.cwd()).resolve(), tool)
    except (OSError, ValueError) as e:
        logger.debug("Could not inspect local %s install: %s", tool, e)
        local = None
    return str(local) if local else tool


def _local_install(start: Path, tool: str) -> Optional[Path]:
    for directory in (start, *start.parents):
        package_dir = directory / "node_modules" / tool
        manifest = package_dir / "package.json"
        if not manifest.is_file():
            continue
        metadata = json.loads(manifest.read_text())
        bin_entry = metadata.get("bin") if isinstance(metadata, dict) else None
        if isinstance(bin_entry, dict):
            bin_entry = bin_entry.get(tool) or next(iter(bin_entry.values()), None)
        if not isinstance(bin_entry, str) or not bin_entry:
            bin_entry = f"bin/{tool}"
        candidate = package_dir / bin_entry
        if candidate.exists():
            return candidate
    return None


async def iter_lines(stream: asyncio.StreamReader) -> AsyncIterator[str]:
    """Decode ``stream`` and yield lines ending in \\n, \\r\\n or \\r."""
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    pending = ""
    while True:
        chunk = await stream.read(CHUNK_SIZE)
        pending += decoder.decode(chunk, final=not chunk)
        if not chunk:
            break
        # a trailing \r may be the first half of \r\n
        held = pending.endswith("\r")
        parts = LINE_BREAK.split(pending[:-1] if held else pending)
        pending = parts.pop() + ("\r" if held else "")
        for line in parts:
            yield line
    if pending:
        parts = LINE_BREAK.split(pending)
        if parts[-1] == "":
            parts.pop()
        for line in parts:
            yield line


class LineClassifier:
    """Stateful classification of one run's stdout lines."""

    def __init__(self, banner: Pattern[str] = ERROR_BANNER, prefix: str = PROGRESS_PREFIX):
        self.banner = banner
        self.prefix = prefix
        self.error_lines: Optional[list[str]] = None

    @property
    def failed(self) -> bool:
        return self.error_lines is not None

    def feed(self, line: str) -> Optional[Progress]:
        if self.error_lines is None and self.banner.search(line):
            self.error_lines = []
        if self.error_lines is not None:
            self.error_lines.append(line)
            return None
        if line.startswith(self.prefix):
            return Progress(line)
        return None

    def result(self) -> ProcessEvent:
        if self.error_lines is not None:
            return Failure(DeploymentError(self.error_lines))
        return Done()


class DeploymentProcess:
    """One invocation of the deployment tool in one sub-service directory.

    Args:
        commands: positional commands, e.g. ``["deploy"]`` or ``["deploy", "function"]``.
        options: forwarded as ``--key value``; ``None`` values are left out.
        cwd: the sub-service directory.
        executable: tool to run; resolved with :func:`resolve_executable` if not given.
        passthrough: inherit the parent's stdout/stderr instead of classifying
            output. With no output to look at, a non-zero exit code is a failure.
    """

    def __init__(
        self,
        commands: Sequence[str],
        options: Optional[Mapping[str, Optional[str]]] = None,
        cwd: Optional[str | os.PathLike[str]] = None,
        executable: Optional[str] = None,
        passthrough: bool = False,
    ):
        self.cwd = Path(cwd) if cwd is not None else None
        self.executable = executable or resolve_executable(self.cwd)
        self.argv = [*commands, *option_flags(options)]
        self.passthrough = passthrough
        self.running = False
        self.process: Optional[asyncio.subprocess.Process] = None
        self._events: Optional[asyncio.Queue[ProcessEvent]] = None
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def label(self) -> str:
        return self.cwd.name if self.cwd is not None else self.executable

    def start(self) -> None:
        """Spawn the tool. Calling it again while the run is in progress does nothing."""
        if self.running:
            return
        self.running = True
        self._events = asyncio.Queue()
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def events(self) -> AsyncIterator[ProcessEvent]:
        """Events of the current run, in output order, ending with Done or Failure."""
        if self._events is None:
            self.start()
        assert self._events is not None
        while True:
            event = await self._events.get()
            yield event
            if isinstance(event, (Done, Failure)):
                return

    async def _run(self) -> None:
        assert self._events is not None
        try:
            terminal = await self._execute()
        except Exception as e:
            logger.exception("Unexpected error while running %s", self.label)
            terminal = Failure(e)
        self.running = False
        self._events.put_nowait(terminal)

    async def _execute(self) -> ProcessEvent:
        assert self._events is not None
        logger.info("Running %s %s in %s", self.executable, " ".join(self.argv), self.cwd)
        pipe = None if self.passthrough else asyncio.subprocess.PIPE
        try:
            self.process = await asyncio.create_subprocess_exec(
                self.executable,
                *self.argv,
                cwd=None if self.cwd is None else str(self.cwd),
                stdout=pipe,
                stderr=pipe,
            )
        except OSError as e:
            logger.error("Could not start %s for %s: %s", self.executable, self.label, e)
            return Failure(SubprocessSpawnFailure(f"Could not start {self.executable}: {e}"))

        if self.passthrough:
            code = await self.process.wait()
            logger.info("%s exited with code %s", self.label, code)
            if code != 0:
                return Failure(DeploymentError([f"{self.executable} {' '.join(self.argv)} exited with code {code}"]))
            return Done()

        assert self.process.stdout is not None and self.process.stderr is not None
        drain = asyncio.ensure_future(self._drain(self.process.stderr))
        classifier = LineClassifier()
        async for line in iter_lines(self.process.stdout):
            event = classifier.feed(line)
            if event is not None:
                self._events.put_nowait(event)
        code = await self.process.wait()
        await drain
        # exit code is informational only
        logger.info("%s exited with code %s (failed=%s)", self.label, code, classifier.failed)
        return classifier.result()

    async def _drain(self, stream: asyncio.StreamReader) -> None:
        async for line in iter_lines(stream):
            logger.debug("[%s stderr] %s", self.label, line)
