"""HTTP Diag - run network and security diagnostic tools against a host.

Drives external probes (HTTP/2, TLS scanners, header and WAF checks, DNS
enumeration) one step at a time, retries failing steps, and presents their
output as unified, logged, human-readable results.
"""

__version__ = "1.0.0"
__license__ = "MIT"

# Package exports
from http_diag.exceptions import (
    DiagWorkflowError,
    FatalError,
    DefinitionError,
    ConfigurationError,
    TaskNotFoundError,
)

__all__ = [
    "__version__",
    "__license__",
    "DiagWorkflowError",
    "FatalError",
    "DefinitionError",
    "ConfigurationError",
    "TaskNotFoundError",
]
