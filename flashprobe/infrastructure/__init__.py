"""
Infrastructure package for flashprobe.

Centralizes the HTTP connectivity to the service under test. Keep this layer
focused on I/O and resource management, decoupled from behavior/oracle logic.
"""

from flashprobe.infrastructure.http_client import (
    ApiResponse,
    ServiceClient,
    ServiceUnavailableError,
    wait_until_ready,
)

__all__ = [
    "ApiResponse",
    "ServiceClient",
    "ServiceUnavailableError",
    "wait_until_ready",
]
