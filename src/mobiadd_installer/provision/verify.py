"""Post-install verification and the final summary.

Waits a fixed grace period, then checks that the service is active (fatal)
and that the port accepts connections (advisory).
"""

from __future__ import annotations

import socket
import time
from collections.abc import Callable
from dataclasses import dataclass, field

import httpx

from ..errors import ServiceError, VerificationWarning
from ..shared.logging import get_logger
from ..shared.paths import InstallPaths
from .configuration import AdminAccount
from .service import ServiceRegistrar

logger = get_logger(__name__)

PING_PATH = "/api/ping"


@dataclass
class VerificationOutcome:
    """Result of post-install verification."""

    service_active: bool
    port_listening: bool
    http_ok: bool = False
    warnings: list[VerificationWarning] = field(default_factory=list)


def is_port_listening(port: int, host: str = "127.0.0.1", timeout: float = 1.0) -> bool:
    """Check whether something accepts TCP connections on host:port."""
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.settimeout(timeout)
        result = sock.connect_ex((host, port))
        sock.close()
        return result == 0
    except OSError:
        return False


def primary_host_ip() -> str:
    """Best guess at the host's outward-facing address, or localhost."""
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            # No packet is sent for a UDP connect
            sock.connect(("10.255.255.255", 1))
            address = sock.getsockname()[0]
        finally:
            sock.close()
    except OSError:
        return "localhost"
    if not address or address.startswith("0."):
        return "localhost"
    return address


class Verifier:
    """Check the installed service after start."""

    def __init__(
        self,
        registrar: ServiceRegistrar,
        grace_seconds: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
        timeout_seconds: float = 3.0,
    ):
        """Initialize verifier.

        Args:
            registrar: Registrar used to query service state.
            grace_seconds: Fixed wait before checking.
            sleep: Sleep function, replaced in tests.
            timeout_seconds: Timeout for the HTTP ping.
        """
        self.registrar = registrar
        self.grace_seconds = grace_seconds
        self.sleep = sleep
        self.timeout_seconds = timeout_seconds

    def verify(self, port: int) -> VerificationOutcome:
        """Verify the service.

        Raises:
            ServiceError: if the service manager reports it inactive.
        """
        if self.grace_seconds:
            self.sleep(self.grace_seconds)

        if not self.registrar.is_active():
            raise ServiceError(
                f"Service '{self.registrar.name}' failed to start",
                step="verify",
                hint=self.registrar.log_hint(),
            )

        outcome = VerificationOutcome(service_active=True, port_listening=is_port_listening(port))
        if not outcome.port_listening:
            outcome.warnings.append(
                VerificationWarning(f"Port {port} not detected yet. It might take a moment.")
            )
            logger.warning("port_not_listening", port=port)
            return outcome

        outcome.http_ok = self._ping(port)
        if not outcome.http_ok:
            outcome.warnings.append(
                VerificationWarning(f"Port {port} is open but {PING_PATH} did not answer yet.")
            )
        return outcome

    def _ping(self, port: int) -> bool:
        url = f"http://127.0.0.1:{port}{PING_PATH}"
        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                response = client.get(url)
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.info("ping_failed", url=url, error=str(e))
            return False


def build_summary(
    paths: InstallPaths,
    port: int,
    admin: AdminAccount,
    host: str | None = None,
) -> list[tuple[str, str]]:
    """Rows for the final summary block."""
    return [
        ("Web Interface", f"http://{host or primary_host_ip()}:{port}"),
        ("Admin User", admin.login),
        ("Password", admin.password),
        ("Config", str(paths.config_file)),
        ("Logs", str(paths.log_dir)),
    ]
