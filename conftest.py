"""
Shared fixtures.

fake_tool   - an executable standing in for the serverless CLI. In its working
              directory it appends its arguments to invocations.jsonl, prints
              fake_output.txt (or two progress lines) and exits with the code
              in fake_exit_code.txt (or 0).
project     - a root serverless.yml for service "orders" with sub-services
              billing and shipping under services/.
make_host   - builds a StubHost, an in-memory HostFramework.
"""

import json
import os
import stat
import sys
from pathlib import Path
from textwrap import dedent

import pytest
import yaml

from orchestrator.models import coerce_config

FAKE_TOOL = dedent(
    """\
    #!{python}
    import json, sys
    from pathlib import Path

    cwd = Path.cwd()
    with open(cwd / "invocations.jsonl", "a") as f:
        f.write(json.dumps({{"argv": sys.argv[1:], "cwd": str(cwd)}}) + "\\n")
    output = cwd / "fake_output.txt"
    if output.exists():
        sys.stdout.write(output.read_text())
    else:
        print("Serverless: Packaging service...")
        print("Serverless: Service deployed")
    print("some stderr noise", file=sys.stderr)
    sys.stdout.flush()
    code = cwd / "fake_exit_code.txt"
    sys.exit(int(code.read_text()) if code.exists() else 0)
    """
)

ROOT_CONFIG = {
    "service": "orders",
    "plugins": ["serverless-multi", "serverless-offline"],
    "provider": {
        "name": "aws",
        "runtime": "nodejs18.x",
        "iamRoleStatements": [
            {"Effect": "Allow", "Action": ["s3:GetObject"], "Resource": "*"},
        ],
    },
    "custom": {"multi": {"location": "services", "symlinks": ["lib"]}},
    "package": {"individually": True},
}


@pytest.fixture(autouse=True)
def _logfile(tmp_path, monkeypatch):
    monkeypatch.setenv("SLS_MULTI_LOGFILE", str(tmp_path / "sls-multi.log"))


@pytest.fixture
def fake_tool(tmp_path) -> Path:
    path = tmp_path / "bin" / "fake-serverless"
    path.parent.mkdir()
    path.write_text(FAKE_TOOL.format(python=sys.executable))
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def write_service(root: Path, name: str, config=None, location: str = "services") -> Path:
    folder = root / location / name
    folder.mkdir(parents=True, exist_ok=True)
    (folder / "service.yml").write_text(yaml.safe_dump(config or {"functions": {"hello": {"handler": "handler.hello"}}}))
    return folder


@pytest.fixture
def project(tmp_path) -> Path:
    root = tmp_path / "project"
    root.mkdir()
    (root / "serverless.yml").write_text(yaml.safe_dump(ROOT_CONFIG))
    write_service(root, "billing")
    write_service(root, "shipping")
    return root


def read_invocations(folder: Path) -> list[dict]:
    path = folder / "invocations.jsonl"
    if not path.exists():
        return []
    return [json.loads(line) for line in path.read_text().splitlines()]


class StubHost:
    """HostFramework kept in memory. ``wander_to`` makes parsing change directory."""

    def __init__(self, root_dir, service=None, options=None, wander_to=None):
        self._root_dir = Path(root_dir)
        if service is None and (self._root_dir / "serverless.yml").exists():
            service = Path(self._root_dir / "serverless.yml")
        self._service = coerce_config(service)
        self.options = dict(options or {})
        self.wander_to = wander_to
        self.logs: list[str] = []
        self.parsed: list[Path] = []
        self.lifecycles: list[tuple[str, dict]] = []

    @property
    def service(self):
        return self._service

    @property
    def root_dir(self):
        return self._root_dir

    def log(self, text):
        self.logs.append(text)

    def current_options(self):
        return dict(self.options)

    def parse_descriptor(self, path):
        self.parsed.append(Path(path))
        config = coerce_config(Path(path))
        if self.wander_to is not None:
            os.chdir(self.wander_to)
        return config

    async def invoke_lifecycle(self, name, options=None):
        self.lifecycles.append((name, dict(options or {})))


@pytest.fixture
def make_host():
    return StubHost
