import asyncio
import json

import pytest

from conftest import read_invocations
from orchestrator.errors import DeploymentError, SubprocessSpawnFailure
from orchestrator.models import Done, Failure, Progress
from orchestrator.process import (
    EXECUTABLE_ENV,
    DeploymentProcess,
    LineClassifier,
    iter_lines,
    option_flags,
    resolve_executable,
)

BANNER = "  Serverless Error ---------------------------------------"


def collect(proc):
    async def run():
        return [event async for event in proc.events()]
    return asyncio.run(run())


def test_option_flags_skip_none():
    assert option_flags({"stage": "dev", "region": None, "verbose": "true"}) == [
        "--stage", "dev", "--verbose", "true",
    ]
    assert option_flags(None) == []


def test_classifier_progress_and_noise():
    classifier = LineClassifier()
    assert classifier.feed("Serverless: Packaging service...") == Progress("Serverless: Packaging service...")
    assert classifier.feed("random webpack output") is None
    assert classifier.result() == Done()


def test_classifier_accumulates_error_from_banner_on():
    classifier = LineClassifier()
    classifier.feed("Serverless: Packaging service...")
    assert classifier.feed(BANNER) is None
    assert classifier.feed("  Stack orders-billing-dev failed") is None
    assert classifier.feed("Serverless: this is still part of the error") is None
    result = classifier.result()
    assert isinstance(result, Failure)
    assert result.error.lines == [
        BANNER,
        "  Stack orders-billing-dev failed",
        "Serverless: this is still part of the error",
    ]


def test_iter_lines_handles_all_line_endings():
    async def run():
        reader = asyncio.StreamReader()
        reader.feed_data(b"one\r\ntwo\rthree\nfo")
        reader.feed_data(b"ur\r")
        reader.feed_data(b"\nfive")
        reader.feed_eof()
        return [line async for line in iter_lines(reader)]

    assert asyncio.run(run()) == ["one", "two", "three", "four", "five"]


def test_successful_run_emits_progress_then_done(tmp_path, fake_tool):
    proc = DeploymentProcess(["deploy"], {"stage": "dev", "region": None}, cwd=tmp_path, executable=str(fake_tool))
    events = collect(proc)
    assert events == [
        Progress("Serverless: Packaging service..."),
        Progress("Serverless: Service deployed"),
        Done(),
    ]
    assert read_invocations(tmp_path)[0]["argv"] == ["deploy", "--stage", "dev"]
    assert proc.running is False


def test_error_banner_fails_regardless_of_exit_code(tmp_path, fake_tool):
    (tmp_path / "fake_output.txt").write_text(
        "Serverless: Packaging service...\n" + BANNER + "\n  detail one\n  detail two\n"
    )
    events = collect(DeploymentProcess(["deploy"], cwd=tmp_path, executable=str(fake_tool)))
    assert events[0] == Progress("Serverless: Packaging service...")
    assert len(events) == 2
    error = events[-1].error
    assert isinstance(error, DeploymentError)
    assert str(error) == "\n".join([BANNER, "  detail one", "  detail two"])


def test_exit_code_alone_does_not_fail_live_runs(tmp_path, fake_tool):
    (tmp_path / "fake_exit_code.txt").write_text("3")
    assert collect(DeploymentProcess(["deploy"], cwd=tmp_path, executable=str(fake_tool)))[-1] == Done()


def test_passthrough_uses_exit_code(tmp_path, fake_tool):
    (tmp_path / "fake_exit_code.txt").write_text("2")
    events = collect(DeploymentProcess(["deploy"], cwd=tmp_path, executable=str(fake_tool), passthrough=True))
    assert len(events) == 1
    assert isinstance(events[0].error, DeploymentError)
    assert "exited with code 2" in str(events[0].error)


def test_spawn_failure_is_a_single_failure_event(tmp_path):
    events = collect(DeploymentProcess(["deploy"], cwd=tmp_path, executable=str(tmp_path / "no-such-tool")))
    assert len(events) == 1
    assert isinstance(events[0].error, SubprocessSpawnFailure)


def test_start_is_idempotent(tmp_path, fake_tool):
    proc = DeploymentProcess(["deploy"], cwd=tmp_path, executable=str(fake_tool))

    async def run():
        proc.start()
        first = proc._task
        proc.start()
        assert proc._task is first
        return [event async for event in proc.events()]

    assert asyncio.run(run())[-1] == Done()
    assert len(read_invocations(tmp_path)) == 1


def test_resolve_executable_prefers_env(monkeypatch, tmp_path):
    monkeypatch.setenv(EXECUTABLE_ENV, "/opt/sls")
    assert resolve_executable(tmp_path) == "/opt/sls"


def test_resolve_executable_finds_local_install(monkeypatch, tmp_path):
    monkeypatch.delenv(EXECUTABLE_ENV, raising=False)
    package = tmp_path / "node_modules" / "serverless"
    (package / "bin").mkdir(parents=True)
    (package / "bin" / "serverless.js").write_text("#!/usr/bin/env node\n")
    (package / "package.json").write_text(json.dumps({"bin": {"serverless": "./bin/serverless.js", "sls": "./bin/serverless.js"}}))
    nested = tmp_path / "services" / "billing"
    nested.mkdir(parents=True)
    assert resolve_executable(nested) == str((package / "bin" / "serverless.js").resolve())


@pytest.mark.parametrize("manifest", [
    None,
    "{not json",
    "[]",
    '"just a string"',
    '{"bin": 5}',
    '{"bin": {"serverless": 5}}',
    '{"bin": null}',
])
def test_resolve_executable_falls_back_to_name(monkeypatch, tmp_path, manifest):
    monkeypatch.delenv(EXECUTABLE_ENV, raising=False)
    if manifest is not None:
        package = tmp_path / "node_modules" / "serverless"
        package.mkdir(parents=True)
        (package / "package.json").write_text(manifest)
    assert resolve_executable(tmp_path) == "serverless"


def test_resolve_executable_defaults_bin_path_for_odd_manifest(monkeypatch, tmp_path):
    monkeypatch.delenv(EXECUTABLE_ENV, raising=False)
    package = tmp_path / "node_modules" / "serverless"
    (package / "bin").mkdir(parents=True)
    (package / "bin" / "serverless").write_text("#!/usr/bin/env node\n")
    (package / "package.json").write_text('{"bin": 5}')
    assert resolve_executable(tmp_path) == str((package / "bin" / "serverless").resolve())
