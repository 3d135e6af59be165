"""Built-in diagnostic task definitions.

Each definition turns the request options in a ``TaskContext`` into one or
more (message, command) steps for an external tool. Messages follow the
``title:detail`` convention; every value interpolated into a command is
shell-quoted.
"""

from shlex import quote
from typing import List

from http_diag.models import ScanType, StepList
from http_diag.registry import TaskContext, registry

DEFAULT_NSE_SCRIPTS = ("http-headers", "http-methods", "http-security-headers", "ssl-enum-ciphers")
DEFAULT_DNS_RECORDS = ("A", "AAAA", "NS", "MX", "TXT", "CAA")


def _curl_style_options(context: TaskContext) -> List[str]:
    """Request options understood by curl-like tools."""
    options: List[str] = []
    for header in context.headers:
        options += ["-H", quote(header)]
    if context.user_agent:
        options += ["-H", quote(f"User-Agent: {context.user_agent}")]
    return options


def _port(context: TaskContext) -> int:
    return 80 if context.url.lower().startswith("http://") else 443


@registry.register("http2", "HTTP/2 support and ALPN negotiation (nghttp, openssl)")
def http2(context: TaskContext) -> StepList:
    steps = StepList(scan_type=ScanType.ACTIVE, host=context.host)
    command = ["nghttp", "-nsv"] + _curl_style_options(context)
    if context.method != "GET":
        command += ["-H", quote(f":method: {context.method}")]
    command.append(quote(context.url))

    steps.add(f"Testing HTTP/2:{context.url}", " ".join(command))
    steps.add(
        f"ALPN negotiation:{context.host}:{_port(context)}",
        f"echo | openssl s_client -alpn h2,http/1.1 "
        f"-connect {quote(context.host)}:{_port(context)} -servername {quote(context.host)} "
        f"2>&1 | grep -E 'ALPN|Protocol'",
    )
    return steps


@registry.register("testssl", "TLS/SSL configuration scan (testssl.sh)")
def testssl(context: TaskContext) -> StepList:
    steps = StepList(scan_type=ScanType.ACTIVE, host=context.host)
    command = ["testssl.sh", "--quiet", "--warnings", "off", "--color", "0"]
    if context.config.ca_bundle:
        command += ["--add-ca", quote(context.config.ca_bundle)]
    if context.proxy:
        command += ["--proxy", quote(context.proxy)]
    command.append(quote(f"{context.host}:{_port(context)}"))

    steps.add(f"TLS/SSL scan:{context.host}", " ".join(command))
    return steps


@registry.register("observatory", "Mozilla HTTP Observatory report (observatory-cli)")
def observatory(context: TaskContext) -> StepList:
    steps = StepList(scan_type=ScanType.PASSIVE, host=context.host)
    steps.add(
        f"Mozilla Observatory:{context.host}",
        f"observatory {quote(context.host)} --format report --zero --rescan",
    )
    return steps


@registry.register("ssllabs", "Qualys SSL Labs grade (ssllabs-scan)")
def ssllabs(context: TaskContext) -> StepList:
    steps = StepList(scan_type=ScanType.PASSIVE, host=context.host)
    steps.add(
        f"SSL Labs grade:{context.host}",
        f"ssllabs-scan --quiet --grade {quote(context.host)}",
    )
    return steps


@registry.register("mixed-content", "Mixed content detection (mixed-content-scan)")
def mixed_content(context: TaskContext) -> StepList:
    steps = StepList(scan_type=ScanType.ACTIVE, host=context.host)
    command = ["mixed-content-scan", quote(context.url), "--no-check-certificate"]
    steps.add(f"Mixed content:{context.url}", " ".join(command))
    return steps


@registry.register("nse", "Nmap NSE web scripts (nmap)")
def nse(context: TaskContext, *scripts: str) -> StepList:
    steps = StepList(scan_type=ScanType.ACTIVE, host=context.host)
    scripts = scripts or DEFAULT_NSE_SCRIPTS
    base = ["nmap", "-Pn", "-p", str(_port(context))]
    if context.interface:
        base += ["-e", quote(context.interface)]

    for script in scripts:
        steps.add(
            f"NSE {script}:{context.host}",
            " ".join(base + ["--script", quote(script), quote(context.host)]),
        )
    return steps


@registry.register("waf", "Web application firewall fingerprint (wafw00f)")
def waf(context: TaskContext) -> StepList:
    steps = StepList(scan_type=ScanType.ACTIVE, host=context.host)
    command = ["wafw00f", "-a"]
    if context.proxy:
        command += ["-p", quote(context.proxy)]
    command.append(quote(context.url))
    steps.add(f"WAF detection:{context.url}", " ".join(command))
    return steps


@registry.register("dns", "DNS record enumeration (dig)")
def dns(context: TaskContext, *records: str) -> StepList:
    steps = StepList(scan_type=ScanType.PASSIVE, host=context.host)
    for record in records or DEFAULT_DNS_RECORDS:
        record = record.upper()
        steps.add(
            f"DNS {record} records:{context.host}",
            f"dig +noall +answer {quote(context.host)} {quote(record)}",
        )
    return steps


ALL_SCANS = ("http2", "testssl", "observatory", "ssllabs", "mixed-content", "nse", "waf", "dns")
