"""
This file is the entry point for the 'sls-multi' command-line tool.
Run 'sls-multi deploy' in a Serverless project to deploy every sub-service
found under services/ (or custom.multi.location).

    sls-multi deploy --stage dev --parallel
    sls-multi remove --service billing,shipping
    sls-multi deploy function --function hello --service billing
    sls-multi generate
    sls-multi add payments
    sls-multi offline

Options the orchestrator does not know are forwarded to every serverless
invocation as --key value.
"""
import asyncio
import logging
import re
from pathlib import Path
from typing import Optional

import typer

from common.app_setup import print_error, setup_logging
from connectors.serverless_host import ServerlessHost
from orchestrator import (
    ExecutionOptions,
    MultiError,
    add_service,
    generate_all,
    run_command,
    run_offline,
)

app = typer.Typer(add_completion=False, help="Run serverless commands on multiple micro services.")

# Commands of the deployment tool that are run on each sub-service.
DEPLOYMENT_COMMANDS = {
    "deploy": "Deploy each managed micro service.",
    "remove": "Remove each managed micro service.",
    "package": "Package each managed micro service.",
    "info": "Show information about each managed micro service.",
    "invoke": "Invoke a function of each managed micro service.",
    "logs": "Output the logs of each managed micro service.",
    "metrics": "Show metrics of each managed micro service.",
    "print": "Print the resolved config of each managed micro service.",
    "rollback": "Roll back each managed micro service.",
    "config": "Configure serverless in each managed micro service.",
    "create": "Create a new service in each managed micro service.",
    "install": "Install a service from GitHub in each managed micro service.",
    "plugin": "Manage plugins of each managed micro service.",
    "login": "Log in from each managed micro service.",
    "logout": "Log out from each managed micro service.",
}

EXTRA_ARGS = {"allow_extra_args": True, "ignore_unknown_options": True}

NUMBER = re.compile(r"-?\d+(\.\d+)?$")


def split_extra_args(args: list[str]) -> tuple[list[str], dict[str, Optional[str]]]:
    """Separate forwarded positional commands from ``--key value`` options.

    ``--key=value``, ``--key value`` and ``-k value`` are accepted; an option
    without a value is forwarded as ``true``. Negative numbers are values,
    never options.
    """
    positionals: list[str] = []
    flags: dict[str, Optional[str]] = {}
    i = 0
    while i < len(args):
        arg = args[i]
        if arg.startswith("-") and len(arg) > 1 and not NUMBER.match(arg):
            key, has_value, value = arg.lstrip("-").partition("=")
            if not has_value:
                if i + 1 < len(args) and (not args[i + 1].startswith("-") or NUMBER.match(args[i + 1])):
                    value = args[i + 1]
                    i += 1
                else:
                    value = "true"
            flags[key] = value
        else:
            positionals.append(arg)
        i += 1
    return positionals, flags


def _host(ctx: typer.Context, flags: Optional[dict[str, Optional[str]]] = None) -> ServerlessHost:
    return ServerlessHost(ctx.obj["root_dir"], flags, executable=ctx.obj["executable"])


def _fail(e: MultiError):
    print_error(e.message)
    raise typer.Exit(1)


@app.callback()
def main(
    ctx: typer.Context,
    root_dir: Path = typer.Option(Path("."), "--root-dir", "-C", help="Serverless project directory"),
    executable: Optional[str] = typer.Option(None, "--bin", help="Deployment tool to run (default: local serverless, then PATH)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug messages"),
):
    setup_logging(app_name="sls-multi", daemon=False, loglevel=logging.DEBUG if verbose else logging.INFO)
    ctx.obj = {"root_dir": root_dir, "executable": executable}


def _register(name: str, help_text: str):
    @app.command(name, help=help_text, context_settings=EXTRA_ARGS)
    def command(
        ctx: typer.Context,
        service: Optional[str] = typer.Option(None, help="Comma-separated services to target"),
        parallel: bool = typer.Option(False, "--parallel", help="Run all services at the same time"),
        strict_filter: bool = typer.Option(True, "--strict-filter/--no-strict-filter", help="Fail if --service matches nothing"),
        max_parallel: Optional[int] = typer.Option(None, "--max-parallel", min=1, help="Limit concurrent services in --parallel mode"),
        passthrough: bool = typer.Option(False, "--passthrough", help="Show serverless output instead of status lines"),
    ):
        commands, flags = split_extra_args(ctx.args)
        try:
            options = ExecutionOptions(
                service_filter=service,
                parallel=parallel,
                passthrough_flags=flags,
                strict_filter=strict_filter,
                max_parallel=max_parallel,
                passthrough=passthrough,
            )
            host = _host(ctx, flags)
            asyncio.run(run_command(host, [name, *commands], options, executable=ctx.obj["executable"]))
        except MultiError as e:
            _fail(e)

    return command


for _name, _help in DEPLOYMENT_COMMANDS.items():
    _register(_name, _help)


@app.command()
def generate(
    ctx: typer.Context,
    service: Optional[str] = typer.Option(None, help="Comma-separated services to target"),
    strict_filter: bool = typer.Option(True, "--strict-filter/--no-strict-filter", help="Fail if --service matches nothing"),
):
    """Generate serverless.yaml and symlinks for each managed micro service."""
    try:
        options = ExecutionOptions(service_filter=service, strict_filter=strict_filter)
        generate_all(_host(ctx), options.service_filter, options.strict_filter)
    except MultiError as e:
        _fail(e)


@app.command()
def add(ctx: typer.Context, name: str = typer.Argument(..., help="Name of the new micro service")):
    """Create a new micro service folder with an empty service.yml."""
    try:
        add_service(_host(ctx), name)
    except MultiError as e:
        _fail(e)


@app.command(context_settings=EXTRA_ARGS)
def offline(
    ctx: typer.Context,
    service: Optional[str] = typer.Option(None, help="Comma-separated services to target"),
    strict_filter: bool = typer.Option(True, "--strict-filter/--no-strict-filter", help="Fail if --service matches nothing"),
):
    """Merge all micro services into the root service and run serverless offline."""
    _, flags = split_extra_args(ctx.args)
    try:
        options = ExecutionOptions(service_filter=service, strict_filter=strict_filter)
        asyncio.run(run_offline(_host(ctx, flags), options.service_filter, options.strict_filter))
    except MultiError as e:
        _fail(e)


if __name__ == "__main__":
    app()
