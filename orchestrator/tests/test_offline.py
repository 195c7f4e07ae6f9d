import asyncio

import yaml

from conftest import write_service
from orchestrator.offline import OFFLINE_CONFIG, concat_services, namespace_functions, run_offline


def test_namespace_functions_prefixes_keys_and_paths():
    config = {
        "functions": {
            "list": {"handler": "h.list", "events": [{"http": {"path": "/items", "method": "get"}}]},
            "get": {"handler": "h.get", "events": [{"http": {"path": "items/{id}", "method": "get"}}, {"schedule": "rate(1 hour)"}]},
        },
    }
    namespaced = namespace_functions("userProfile", config)
    assert list(namespaced) == ["userProfile-list", "userProfile-get"]
    assert namespaced["userProfile-list"]["events"][0]["http"]["path"] == "user-profile/items"
    assert namespaced["userProfile-get"]["events"][0]["http"]["path"] == "user-profile/items/{id}"
    assert namespaced["userProfile-get"]["events"][1] == {"schedule": "rate(1 hour)"}
    assert config["functions"]["list"]["events"][0]["http"]["path"] == "/items"


def test_namespace_functions_uses_custom_base_path():
    config = {
        "custom": {"customDomain": {"basePath": "v2/billing"}},
        "functions": {"pay": {"handler": "h.pay", "events": [{"http": {"path": "pay", "method": "post"}}]}},
    }
    assert namespace_functions("billing", config)["billing-pay"]["events"][0]["http"]["path"] == "v2/billing/pay"


def test_concat_skips_services_without_functions(project, make_host):
    write_service(project, "empty", {"provider": {"memorySize": 256}})
    host = make_host(project)
    merged = concat_services(host)
    assert sorted(merged["functions"]) == ["billing-hello", "shipping-hello"]
    assert "serverless-multi" not in merged["plugins"]
    assert "Skipping empty as there are no functions" in host.logs


def test_run_offline_writes_config_and_starts_offline(project, make_host):
    host = make_host(project)
    path = asyncio.run(run_offline(host, {"billing"}))
    assert path == project / OFFLINE_CONFIG
    written = yaml.safe_load(path.read_text())
    assert written["service"] == "orders"
    assert list(written["functions"]) == ["billing-hello"]
    assert host.lifecycles == [("offline:start", {"config": "serverless.offline.yaml"})]
