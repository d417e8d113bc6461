"""LWS controller main application."""

import asyncio
import logging
import signal
from typing import Optional

from .cluster import ClusterConnection
from .config import Settings, get_settings
from .errors import WatchError
from .watch import PodController

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    """Configure root logging once for the process."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


class Application:
    """Main application orchestrator."""

    def __init__(self, settings: Settings):
        """
        Initialize application.

        Args:
            settings: Controller settings
        """
        self.settings = settings
        self.cluster: Optional[ClusterConnection] = None
        self.controller: Optional[PodController] = None
        self._shutdown = False

    async def start(self) -> None:
        """
        Start the application and run until shutdown is requested.

        Raises:
            WatchError: If a resource watch stops for good
        """
        from . import __version__

        logger.info(f"Starting {self.settings.service_name} {__version__}")
        logger.info(f"   Field manager: {self.settings.field_manager}")
        logger.info(f"   Namespace: {self.settings.namespace or '<all>'}")

        self.cluster = ClusterConnection(self.settings)
        if not self.cluster.is_healthy():
            logger.warning("Kubernetes API server is not reachable, watches will retry")

        self.controller = PodController(self.cluster, self.settings)
        await self.controller.start()

        logger.info("Pod controller started")

        try:
            while not self._shutdown:
                if self.controller.failure is not None:
                    raise WatchError("Resource watch stopped, exiting") from self.controller.failure
                await asyncio.sleep(1)
        except asyncio.CancelledError:
            pass

    async def stop(self) -> None:
        """Stop the application."""
        logger.info("Shutting down LWS controller...")
        self._shutdown = True

        if self.controller:
            await self.controller.stop()
        if self.cluster:
            self.cluster.close()

        logger.info("LWS controller stopped")

    def handle_signal(self, sig: int) -> None:
        """
        Handle shutdown signals.

        Args:
            sig: Signal number
        """
        logger.info(f"Received signal {sig}, initiating shutdown...")
        self._shutdown = True


async def main() -> None:
    """Main entry point."""
    settings = get_settings()
    configure_logging(settings)
    app = Application(settings)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, app.handle_signal, sig)

    try:
        await app.start()
    finally:
        await app.stop()


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
