"""Utility functions for host detection and text handling.

This module contains helpers for detecting the operating system family and
its CA bundle, measuring the terminal, discovering the scanner's own
addresses and cleaning up raw tool output.
"""

import os
import platform
import re
import shutil
import socket
from pathlib import Path
from typing import Dict, List, Optional


# CSI sequences (colours, cursor movement) plus OSC and two-byte escapes
ANSI_RE = re.compile(r"\x1B(?:\[[0-?]*[ -/]*[@-~]|\][^\x07]*\x07|[@-Z\\-_])")

IPV4_RE = re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b")

CA_BUNDLES: Dict[str, List[str]] = {
    'debian': ['/etc/ssl/certs/ca-certificates.crt'],
    'redhat': [
        '/etc/pki/tls/certs/ca-bundle.crt',
        '/etc/pki/ca-trust/extracted/pem/tls-ca-bundle.pem',
    ],
    'suse': ['/etc/ssl/ca-bundle.pem'],
    'alpine': ['/etc/ssl/certs/ca-certificates.crt', '/etc/ssl/cert.pem'],
    'darwin': ['/etc/ssl/cert.pem', '/usr/local/etc/openssl/cert.pem'],
    'bsd': ['/usr/local/share/certs/ca-root-nss.crt', '/etc/ssl/cert.pem'],
}


def detect_os_family(os_release: Path = Path('/etc/os-release')) -> str:
    """Detect the operating system family.

    Linux distributions are classified from ``ID`` and ``ID_LIKE`` in
    os-release; other systems by ``platform.system()``.

    Args:
        os_release: Path to the os-release file, overridable for tests.

    Returns:
        One of the keys of ``CA_BUNDLES`` or ``"unknown"``.
    """
    system = platform.system().lower()

    if system == 'darwin':
        return 'darwin'
    if system.endswith('bsd'):
        return 'bsd'
    if system != 'linux':
        return 'unknown'

    ids: List[str] = []
    try:
        for line in os_release.read_text().splitlines():
            key, _, value = line.partition('=')
            if key in ('ID', 'ID_LIKE'):
                ids.extend(value.strip().strip('"').lower().split())
    except OSError:
        return 'unknown'

    for family, members in (
        ('debian', ('debian', 'ubuntu')),
        ('redhat', ('rhel', 'fedora', 'centos', 'redhat')),
        ('suse', ('suse', 'opensuse', 'sles')),
        ('alpine', ('alpine',)),
    ):
        if any(i in members for i in ids):
            return family
    return 'unknown'


def default_ca_bundle(family: Optional[str] = None) -> Optional[str]:
    """Return the first existing CA bundle path for the OS family, if any."""
    family = family or detect_os_family()
    for candidate in CA_BUNDLES.get(family, []):
        if os.path.exists(candidate):
            return candidate
    return None


def terminal_columns(default: int = 80) -> int:
    """Get the terminal width in columns."""
    return shutil.get_terminal_size((default, 24)).columns


def ensure_directory(dir_path: Path) -> None:
    """Ensure a directory exists, creating it if necessary.

    Args:
        dir_path: Path to the directory to create.

    Raises:
        OSError: If directory creation fails for reasons other than already existing.
    """
    dir_path.mkdir(parents=True, exist_ok=True)


def local_addresses() -> List[str]:
    """Collect IPv4 addresses this machine uses as a source.

    Loopback addresses are skipped since they never leak to a target.
    """
    addresses: List[str] = []

    try:
        for info in socket.getaddrinfo(socket.gethostname(), None, socket.AF_INET):
            address = info[4][0]
            if not address.startswith('127.') and address not in addresses:
                addresses.append(address)
    except (socket.gaierror, OSError):
        pass

    # Outbound address for the default route; connect() on UDP sends nothing
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(('192.0.2.1', 9))
            address = sock.getsockname()[0]
            if not address.startswith('127.') and address not in addresses:
                addresses.append(address)
    except OSError:
        pass

    return addresses


def strip_ansi(text: str) -> str:
    """Remove ANSI escape sequences and carriage returns."""
    return ANSI_RE.sub('', text or '').replace('\r', '')


def redact_addresses(text: str, addresses: List[str], mask: str = 'x.x.x.x') -> str:
    """Replace any of the given IPv4 addresses in text with a mask."""
    if not addresses:
        return text
    return IPV4_RE.sub(lambda m: mask if m.group(0) in addresses else m.group(0), text)


def host_from_url(url: str) -> str:
    """Extract the host part of a URL, tolerating a missing scheme."""
    from urllib.parse import urlsplit

    if '://' not in url:
        url = f'http://{url}'
    return urlsplit(url).hostname or ''
