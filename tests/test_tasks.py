import shlex

import pytest

from http_diag.exceptions import TaskNotFoundError
from http_diag.models import ScanType, StepList
from http_diag.registry import TaskContext, TaskRegistry, registry
from http_diag.tasks import ALL_SCANS, DEFAULT_DNS_RECORDS, DEFAULT_NSE_SCRIPTS


@pytest.fixture()
def ctx(config):
    return TaskContext(config=config, url="https://example.com/path?q=1")


def test_every_scan_is_registered() -> None:
    for name in ALL_SCANS:
        assert name in registry
    assert set(registry.names()) >= set(ALL_SCANS)


@pytest.mark.parametrize("name", ALL_SCANS)
def test_builtin_definitions_are_well_formed(ctx, name) -> None:
    steps = registry.get(name).evaluate(ctx)

    assert isinstance(steps, StepList)
    steps.validate()
    assert len(steps) >= 1
    assert steps.host == "example.com"
    assert steps.scan_type in (ScanType.ACTIVE, ScanType.PASSIVE)
    for step in steps:
        assert step.title
        shlex.split(step.command)


def test_context_derives_host_and_normalises_method(config) -> None:
    context = TaskContext(config=config, url="example.org:8443/x", method="post")

    assert context.host == "example.org"
    assert context.method == "POST"


def test_http2_passes_headers_and_method(config) -> None:
    context = TaskContext(
        config=config,
        url="https://example.com/",
        method="PUT",
        headers=("X-Test: a b",),
        user_agent="diag/1.0",
    )

    steps = registry.get("http2").evaluate(context)
    first = next(iter(steps))

    assert first.title == "Testing HTTP/2"
    assert first.detail == "https://example.com/"
    args = shlex.split(first.command)
    assert args[:2] == ["nghttp", "-nsv"]
    assert "X-Test: a b" in args
    assert "User-Agent: diag/1.0" in args
    assert ":method: PUT" in args
    assert args[-1] == "https://example.com/"


def test_hostile_url_is_quoted(config) -> None:
    context = TaskContext(config=config, url="https://example.com/;rm -rf /")

    steps = registry.get("waf").evaluate(context)

    assert shlex.split(next(iter(steps)).command)[-1] == "https://example.com/;rm -rf /"


def test_testssl_uses_ca_bundle_and_proxy(tmp_path) -> None:
    from http_diag.config import RuntimeConfig

    config = RuntimeConfig(work_dir=tmp_path, ca_bundle="/etc/ca.pem")
    context = TaskContext(config=config, url="http://example.com", proxy="http://proxy:3128")

    args = shlex.split(next(iter(registry.get("testssl").evaluate(context))).command)

    assert args[args.index("--add-ca") + 1] == "/etc/ca.pem"
    assert args[args.index("--proxy") + 1] == "http://proxy:3128"
    assert args[-1] == "example.com:80"


def test_nse_default_and_custom_scripts(ctx) -> None:
    nse = registry.get("nse")

    assert len(nse.evaluate(ctx)) == len(DEFAULT_NSE_SCRIPTS)
    custom = nse.evaluate(ctx, "http-title")
    assert len(custom) == 1
    assert "--script http-title" in next(iter(custom)).command


def test_nse_interface(config) -> None:
    context = TaskContext(config=config, url="https://example.com", interface="eth1")

    command = next(iter(registry.get("nse").evaluate(context))).command

    assert "-e eth1" in command


def test_dns_records(ctx) -> None:
    dns = registry.get("dns")

    assert [s.title for s in dns.evaluate(ctx)] == [f"DNS {r} records" for r in DEFAULT_DNS_RECORDS]
    assert [s.title for s in dns.evaluate(ctx, "soa")] == ["DNS SOA records"]


def test_registry_lookup_and_duplicates() -> None:
    local = TaskRegistry()

    @local.register("one", "first task")
    def one(ctx):
        return StepList()

    assert local.get("one").description == "first task"
    assert local.describe() == [("one", "first task")]
    assert len(local) == 1
    with pytest.raises(ValueError):
        local.register("one")(one)
    with pytest.raises(TaskNotFoundError, match="Available: one"):
        local.get("two")
