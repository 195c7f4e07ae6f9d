"""
offline.py
----------
Runs every sub-service inside one local ``serverless offline`` instance.

The functions of all selected sub-services are copied into the root service
under ``<service>-<function>`` keys, with their HTTP paths prefixed by the
sub-service's base path. This works for simple functions; sub-services that
differ a lot from the root configuration are better run on their own.
"""

from __future__ import annotations

import logging
import posixpath
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

import yaml

from common.workdir import preserved_cwd
from connectors.host_interface import HostFramework

from .locator import find_root_descriptor, load_service, select_services
from .materialize import PLUGIN_NAME, kebab_case, plain

logger = logging.getLogger(__name__)

OFFLINE_CONFIG = "serverless.offline.yaml"


def namespace_functions(name: str, config: Mapping[str, Any]) -> dict[str, Any]:
    functions = plain(config.get("functions")) or {}
    custom_domain = (plain(config.get("custom")) or {}).get("customDomain") or {}
    base_path = custom_domain.get("basePath") or kebab_case(name)
    namespaced = {}
    for key, function in functions.items():
        for event in (function or {}).get("events") or []:
            http = event.get("http") if isinstance(event, dict) else None
            if isinstance(http, dict) and http.get("path") is not None:
                http["path"] = posixpath.normpath(f"{base_path}/{http['path']}".replace("\\", "/"))
        namespaced[f"{name}-{key}"] = function
    return namespaced


def concat_services(host: HostFramework, service_filter: Optional[Iterable[str]] = None, strict_filter: bool = True) -> dict[str, Any]:
    """The root descriptor with every sub-service's functions merged in."""
    with preserved_cwd():
        root_config = plain(host.parse_descriptor(find_root_descriptor(host.root_dir)))
    functions = dict(root_config.get("functions") or {})
    for stub in select_services(host, service_filter, strict_filter):
        service = load_service(host, stub)
        if not service.config.get("functions"):
            host.log(f"Skipping {service.name} as there are no functions")
            continue
        host.log(f"Merging functions from {service.name}")
        functions.update(namespace_functions(service.name, service.config))
    root_config["functions"] = functions
    root_config["plugins"] = [plugin for plugin in root_config.get("plugins") or [] if plugin != PLUGIN_NAME]
    return root_config


async def run_offline(host: HostFramework, service_filter: Optional[Iterable[str]] = None, strict_filter: bool = True) -> Path:
    host.log("Attempting to concat all services into current service to then run in Offline")
    merged = concat_services(host, service_filter, strict_filter)
    path = Path(host.root_dir) / OFFLINE_CONFIG
    path.write_text(yaml.safe_dump(merged, sort_keys=False, default_flow_style=False))
    logger.info("Wrote %s with %d functions", path, len(merged["functions"]))
    await host.invoke_lifecycle("offline:start", {"config": OFFLINE_CONFIG})
    return path
