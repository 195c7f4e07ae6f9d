from pathlib import Path
from typing import Any, Mapping, Optional, Protocol

from box import Box


class HostFramework(Protocol):
    """
    Protocol for the command framework hosting the orchestrator.
    The orchestration core only talks to the host through this narrow
    interface, so it can run against the real Serverless project as well as
    against a stub in tests.
    Examples:
        host.service.custom.multi.location   # 'services'
        host.log("Generating serverless.yaml for billing")
        config = host.parse_descriptor(Path("services/billing/service.yml"))
        await host.invoke_lifecycle("offline:start")
    """

    @property
    def service(self) -> Box:
        """The parsed root service descriptor (dot-access)."""
        ...

    @property
    def root_dir(self) -> Path: ...

    def log(self, text: str) -> None: ...

    def current_options(self) -> dict[str, Optional[str]]:
        """
        Options given on the command line that should reach the deployment
        tool, as ``{"stage": "dev", "region": None, ...}``.
        ``None`` values are never forwarded.
        """
        ...

    def parse_descriptor(self, path: Path) -> Box:
        """
        Parse a service descriptor file.
        Implementations may change the working directory as a side effect;
        callers are responsible for restoring it.
        """
        ...

    async def invoke_lifecycle(self, name: str, options: Optional[Mapping[str, Any]] = None) -> None:
        """
        Run another host command, e.g. ``offline:start``, in the root service.
        Raises MultiError if the command fails.
        """
        ...
