"""Anonymous, non-blocking install telemetry.

Respects QASKILLS_TELEMETRY=0 and DO_NOT_TRACK=1. A send runs on its own
daemon thread with a hard timeout; nothing that happens there can reach
the caller.
"""

import logging
import threading
import time
from collections.abc import Callable

from qaskills import __version__
from qaskills.api_client import RegistryClient
from qaskills.config import Config, get_config
from qaskills.models import TelemetryEvent

logger = logging.getLogger(__name__)


def make_event(skill_id: str, action: str, agents: list[str]) -> TelemetryEvent:
    """Build an event stamped with this CLI's version."""
    return TelemetryEvent(
        skill_id=skill_id, action=action, agents=list(agents), cli_version=__version__
    )


class TelemetryReporter:
    """Fire-and-forget sender for TelemetryEvent."""

    def __init__(
        self,
        config: Config | None = None,
        client_factory: Callable[[], RegistryClient] | None = None,
    ):
        """Initialize the reporter.

        Args:
            config: Configuration with opt-out flags and timeout.
            client_factory: Creates the HTTP client used for a single send.
        """
        self.config = config or get_config()
        self.client_factory = client_factory or (lambda: RegistryClient(config=self.config))
        self._threads: list[threading.Thread] = []

    @property
    def enabled(self) -> bool:
        return self.config.telemetry_enabled

    def report(self, event: TelemetryEvent) -> threading.Thread | None:
        """Send an event in the background.

        Returns:
            The sending thread, or None if telemetry is disabled or the
            thread could not be started.
        """
        if not self.enabled:
            logger.debug("Telemetry disabled, not sending event")
            return None

        thread = threading.Thread(
            target=self._send, args=(event,), name="qaskills-telemetry", daemon=True
        )
        try:
            thread.start()
        except Exception as e:
            logger.debug(f"Telemetry thread not started: {e}")
            return None
        self._threads.append(thread)
        return thread

    def _send(self, event: TelemetryEvent) -> None:
        try:
            with self.client_factory() as client:
                client.track_install(
                    event.model_dump(by_alias=True),
                    timeout=self.config.qaskills_telemetry_timeout,
                )
        except Exception as e:
            logger.debug(f"Telemetry send failed: {e}")

    def flush(self, timeout: float | None = None) -> None:
        """Wait for outstanding sends, at most `timeout` seconds in total."""
        if timeout is None:
            timeout = self.config.qaskills_telemetry_timeout
        deadline = time.monotonic() + timeout
        for thread in self._threads:
            thread.join(max(0.0, deadline - time.monotonic()))
        self._threads = [thread for thread in self._threads if thread.is_alive()]
