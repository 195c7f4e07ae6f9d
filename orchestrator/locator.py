"""
locator.py
----------
Finds the sub-services of a project and loads their descriptors.

A sub-service is an immediate sub-directory of the services root
(``services/`` by default, ``custom.multi.location`` in the root descriptor)
that contains a ``service.yml``.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, Optional

from common.workdir import preserved_cwd
from connectors.host_interface import HostFramework

from .errors import ConfigNotFound, ServiceFilterEmpty, TargetFolderMissing
from .models import SERVICE_DESCRIPTOR, ServiceDescriptor

logger = logging.getLogger(__name__)

DEFAULT_SERVICES_PATH = "services"
ROOT_DESCRIPTORS = ("serverless.yml", "serverless.yaml", "serverless.json")


def find_root_descriptor(root_dir: str | os.PathLike[str]) -> Path:
    """Return the root serverless descriptor, checking .yml, .yaml then .json."""
    root = Path(root_dir)
    for candidate in ROOT_DESCRIPTORS:
        path = root / candidate
        if path.exists():
            return path
    raise ConfigNotFound(f"Cannot find serverless config in {root}")


def services_subpath(host: HostFramework) -> str:
    """The services root configured under ``custom.multi.location``."""
    location = host.service.custom.multi.location
    return str(location) if location else DEFAULT_SERVICES_PATH


def list_services(
    root_dir: str | os.PathLike[str],
    subpath: str = DEFAULT_SERVICES_PATH,
    service_filter: Optional[Iterable[str]] = None,
) -> list[ServiceDescriptor]:
    """Sub-service stubs (name and directory, empty config) in filesystem order.

    A missing services root means there is nothing to orchestrate, unless
    specific services were asked for.
    """
    wanted = set(service_filter) if service_filter else None
    services_root = Path(root_dir, subpath).resolve()
    logger.info("Looking for services in %s", services_root)
    try:
        entries = os.listdir(services_root)
    except OSError as e:
        if wanted:
            raise TargetFolderMissing(
                f"Services folder {services_root} not found, cannot run {', '.join(sorted(wanted))}"
            ) from e
        logger.info("No services folder at %s (%s)", services_root, e.strerror)
        return []

    stubs = []
    for entry in entries:
        directory = services_root / entry
        if not directory.is_dir() or not (directory / SERVICE_DESCRIPTOR).exists():
            continue
        if wanted is not None and entry not in wanted:
            continue
        stubs.append(ServiceDescriptor(name=entry, directory=directory))
    return stubs


def select_services(host: HostFramework, service_filter: Optional[Iterable[str]] = None, strict_filter: bool = True) -> list[ServiceDescriptor]:
    """:func:`list_services` for the host's project, with the empty-filter check.

    A filter that selects nothing is an error with ``strict_filter``, and a
    logged no-op without it.
    """
    wanted = set(service_filter) if service_filter else None
    stubs = list_services(host.root_dir, services_subpath(host), wanted)
    if wanted and not stubs:
        message = f"No services matching {', '.join(sorted(wanted))}"
        if strict_filter:
            raise ServiceFilterEmpty(message)
        host.log(f"{message}, nothing to do")
    return stubs


def load_service(host: HostFramework, stub: ServiceDescriptor) -> ServiceDescriptor:
    """Parse the stub's ``service.yml`` through the host.

    The working directory is restored right after parsing, before the caller
    does anything else with the result.
    """
    with preserved_cwd():
        config = host.parse_descriptor(stub.descriptor_path)
    return ServiceDescriptor(name=stub.name, directory=stub.directory, config=config)
