"""
materialize.py
--------------
Writes the per-service ``serverless.yaml`` and links shared folders.

Each sub-service only holds a small ``service.yml``. Before the deployment
tool runs in it, the root descriptor's ``custom``, ``package``, ``provider``,
``resources`` and ``plugins`` are merged with that file and the result is
written next to it, renamed ``<root service>-<sub-service>``. ``node_modules``
and any folder listed under ``custom.multi.symlinks`` are linked from the
sub-service back to the project root.
"""

from __future__ import annotations

import copy
import logging
import os
import re
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from box import Box, BoxList

from common.workdir import preserved_cwd
from connectors.host_interface import HostFramework

from .errors import MultiError, ServiceExists
from .locator import find_root_descriptor, load_service, select_services, services_subpath
from .models import SERVICE_DESCRIPTOR, ServiceDescriptor

logger = logging.getLogger(__name__)

PLUGIN_NAME = "serverless-multi"
GENERATED_CONFIG = "serverless.yaml"
SHARED_LINKS = ("node_modules",)
MERGED_SECTIONS = ("custom", "package", "provider", "resources")

_WORDS = re.compile(r"[A-Z]{2,}(?=[A-Z][a-z]+|[0-9]|\b|_)|[A-Z]?[a-z]+|[A-Z]+|[0-9]+")


def kebab_case(value: str) -> str:
    """``"userService2"`` -> ``"user-service-2"``."""
    return "-".join(word.lower() for word in _WORDS.findall(value))


def plain(value: Any) -> Any:
    """Box/BoxList -> builtin dict/list, so the result can be dumped as YAML."""
    if isinstance(value, Box):
        return value.to_dict()
    if isinstance(value, BoxList):
        return value.to_list()
    return copy.deepcopy(value)


def deep_merge(base: Any, override: Any) -> Any:
    """Merge ``override`` into a copy of ``base``.

    Mappings merge key by key and lists merge index by index; anything else in
    ``override`` replaces what is in ``base``.
    """
    if isinstance(base, Mapping) and isinstance(override, Mapping):
        merged = {key: copy.deepcopy(value) for key, value in base.items()}
        for key, value in override.items():
            merged[key] = deep_merge(merged[key], value) if key in merged else copy.deepcopy(value)
        return merged
    if isinstance(base, list) and isinstance(override, list):
        merged_list = [copy.deepcopy(value) for value in base]
        for index, value in enumerate(override):
            if index < len(merged_list):
                merged_list[index] = deep_merge(merged_list[index], value)
            else:
                merged_list.append(copy.deepcopy(value))
        return merged_list
    return copy.deepcopy(override)


def union_statements(*sources: Optional[list[Any]]) -> list[Any]:
    """Concatenate statement lists, dropping structurally equal duplicates."""
    result: list[Any] = []
    for source in sources:
        for statement in source or []:
            if statement not in result:
                result.append(statement)
    return result


def root_service_name(root_config: Mapping[str, Any]) -> str:
    service = root_config.get("service")
    if isinstance(service, Mapping):
        return str(service.get("name"))
    return str(service)


def merge_service_config(name: str, root_config: Mapping[str, Any], service_config: Mapping[str, Any]) -> dict[str, Any]:
    """The full descriptor for sub-service ``name``."""
    root = plain(root_config)
    config = plain(service_config)
    provider = root.get("provider") or {}

    base: dict[str, Any] = {}
    for section in MERGED_SECTIONS:
        value = root.get(section)
        if section == "provider":
            value = {key: item for key, item in provider.items() if key != "iamRoleStatements"}
        if value is not None:
            base[section] = value
    base["plugins"] = [plugin for plugin in root.get("plugins") or [] if plugin != PLUGIN_NAME]

    merged = deep_merge(base, config)

    roles = union_statements((merged.get("provider") or {}).get("iamRoleStatements"), provider.get("iamRoleStatements"))
    if roles:
        merged.setdefault("provider", {})["iamRoleStatements"] = roles

    custom_domain = (merged.get("custom") or {}).get("customDomain")
    if isinstance(custom_domain, dict) and not ((config.get("custom") or {}).get("customDomain") or {}).get("basePath"):
        custom_domain["basePath"] = kebab_case(name)

    merged["plugins"] = [plugin for plugin in merged.get("plugins") or [] if plugin != PLUGIN_NAME]
    merged["service"] = f"{root_service_name(root)}-{name}"
    return merged


def write_service_config(folder: Path, name: str, root_config: Mapping[str, Any], service_config: Mapping[str, Any]) -> Path:
    path = Path(folder) / GENERATED_CONFIG
    merged = merge_service_config(name, root_config, service_config)
    path.write_text(yaml.safe_dump(merged, sort_keys=False, default_flow_style=False))
    logger.info("Wrote %s", path)
    return path


def create_symlinks(root_config: Mapping[str, Any], root_dir: Path, folder: Path) -> list[Path]:
    """Link shared folders of the root into ``folder``. Existing links are kept.

    Targets are relative, so the project can be moved or mounted elsewhere.
    """
    extra = plain((root_config.get("custom") or {}).get("multi") or {}).get("symlinks") or []
    created = []
    for name in [*SHARED_LINKS, *extra]:
        link = Path(folder) / name
        target = os.path.relpath(Path(root_dir) / name, link.parent)
        link.parent.mkdir(parents=True, exist_ok=True)
        try:
            os.symlink(target, link)
        except FileExistsError:
            logger.debug("Link %s already exists", link)
            continue
        created.append(link)
    return created


def generate_service(host: HostFramework, root_config: Mapping[str, Any], service: ServiceDescriptor) -> Path:
    host.log(f"Generating serverless.yaml and symlinks for service {service.name}")
    create_symlinks(host.service, host.root_dir, service.directory)
    return write_service_config(service.directory, service.name, root_config, service.config)


def generate_all(host: HostFramework, service_filter=None, strict_filter: bool = True) -> list[ServiceDescriptor]:
    """Materialize config and links for every selected sub-service."""
    host.log("Generating serverless.yaml and symlinks for services")
    stubs = select_services(host, service_filter, strict_filter)
    with preserved_cwd():
        root_config = host.parse_descriptor(find_root_descriptor(host.root_dir))
    services = []
    for stub in stubs:
        service = load_service(host, stub)
        generate_service(host, root_config, service)
        services.append(service)
    return services


def add_service(host: HostFramework, name: str) -> ServiceDescriptor:
    """Create ``<services root>/<name>/service.yml`` and generate its config."""
    if not name or name != Path(name).name or name.startswith("."):
        raise MultiError(f"Invalid service name {name!r}")
    folder = Path(host.root_dir, services_subpath(host)) / name
    descriptor = folder / SERVICE_DESCRIPTOR
    if descriptor.exists():
        raise ServiceExists(f"Service {name} already exists at {folder}")
    folder.mkdir(parents=True, exist_ok=True)
    descriptor.write_text(yaml.safe_dump({"functions": {}}, sort_keys=False))
    host.log(f"Created service {name} in {folder}")
    return generate_all(host, [name])[0]
