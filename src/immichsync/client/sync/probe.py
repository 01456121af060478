"""Connection health probe.

Runs a fixed battery of lightweight requests and classifies the API key:

- INVALID: server info or asset search rejected with 401/403
- LIMITED: any probe failed (some features will be disabled)
- OK: every probe succeeded
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from immichsync.client.sync.cancel import CancelToken
from immichsync.client.sync.types import ConnectionReport, ConnectionStatus

if TYPE_CHECKING:
    from immichsync.client.api import ImmichClient, ProbeOutcome

logger = logging.getLogger(__name__)

MISSING_CREDENTIALS = "Missing server URL or API key."
AUTH_STATUSES = (401, 403)


@dataclass(frozen=True)
class _Probe:
    path: str
    method: str
    warning: str
    json: dict[str, Any] | None = None
    allowed_status: tuple[int, ...] = ()
    critical: bool = False


PROBES: tuple[_Probe, ...] = (
    _Probe("server/about", "GET", "Server info unavailable", critical=True),
    _Probe(
        "search/metadata",
        "POST",
        "Asset read/search not permitted",
        json={"page": 1, "size": 1},
        critical=True,
    ),
    _Probe("albums", "GET", "Album filtering disabled"),
    _Probe("duplicates", "GET", "Duplicates view disabled"),
    # An empty upload is rejected as invalid (400/422) when the key may upload.
    _Probe("assets", "POST", "Uploads disabled", json={}, allowed_status=(400, 422)),
)


class ConnectionProbe:
    """Classify what the configured API key is allowed to do."""

    def __init__(
        self,
        client_factory: Callable[[], ImmichClient] | None,
        cancel_token: CancelToken | None = None,
    ) -> None:
        """Initialize the probe.

        Args:
            client_factory: Builds a client; None when URL or key is missing.
            cancel_token: Checked between probes.
        """
        self._client_factory = client_factory
        self._token = cancel_token or CancelToken()

    def run(self) -> ConnectionReport:
        """Run all probes.

        Raises:
            CancelledError: If cancelled between probes.
        """
        if self._client_factory is None:
            return ConnectionReport(ConnectionStatus.INVALID, MISSING_CREDENTIALS)

        warnings: list[str] = []
        rejected = False
        with self._client_factory() as client:
            for probe in PROBES:
                self._token.raise_if_cancelled()
                outcome: ProbeOutcome = client.probe(
                    probe.path,
                    method=probe.method,
                    json=probe.json,
                    allowed_status=probe.allowed_status,
                )
                if outcome.ok:
                    continue
                logger.debug(f"Probe {probe.method} {probe.path} failed: {outcome.message}")
                warnings.append(f"{probe.warning}: {outcome.message}")
                if probe.critical and outcome.status_code in AUTH_STATUSES:
                    rejected = True

        return classify(warnings, rejected)


def classify(warnings: list[str], rejected: bool) -> ConnectionReport:
    """Turn probe warnings into a ConnectionReport."""
    if rejected:
        return ConnectionReport(ConnectionStatus.INVALID, "API key rejected.", tuple(warnings))
    if warnings:
        return ConnectionReport(
            ConnectionStatus.LIMITED, "Connected with limited permissions.", tuple(warnings)
        )
    return ConnectionReport(ConnectionStatus.OK, "Connected.")
