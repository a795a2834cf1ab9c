"""
LiraX Bridge entry point
Runs the webhook receiver and the maintenance scheduler
"""

import asyncio
import sys

import uvicorn
from loguru import logger

from lirax.core import LiraXCore
from lirax.models import Credentials
from lirax.services.maintenance import MaintenanceScheduler
from lirax.settings import global_settings
from lirax.webhook import create_webhook_server


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


async def main() -> None:
    """Main function"""
    configure_logging(global_settings.log_level)
    logger.info("Starting LiraX Bridge...")

    core = LiraXCore(Credentials.from_settings(global_settings), global_settings)
    scheduler = MaintenanceScheduler(
        breakers=core.orchestrator.breakers,
        throttle=core.orchestrator.throttle,
        cache=core.cache,
        interval_seconds=global_settings.maintenance_interval_seconds,
    )
    webhook = create_webhook_server(
        incoming_token=global_settings.incoming_token,
        path=global_settings.webhook_path,
        validate_token=global_settings.validate_webhook_token,
        event_filter=global_settings.event_filter,
    )
    webhook.on("*", lambda event: logger.info(f"LiraX event: {event.event_type}"))

    server = uvicorn.Server(
        uvicorn.Config(
            webhook.app,
            host=global_settings.webhook_host,
            port=global_settings.webhook_port,
            log_level=global_settings.log_level.lower(),
        )
    )

    try:
        logger.info("Starting maintenance scheduler...")
        scheduler.start()

        if global_settings.base_url:
            healthy = await core.health_check()
            logger.info(f"LiraX API health check: {'ok' if healthy else 'failed'}")

        logger.info(
            f"Webhook receiver listening on "
            f"{global_settings.webhook_host}:{global_settings.webhook_port}"
            f"{webhook.path}"
        )
        await server.serve()

    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
    except Exception as e:
        logger.error(f"Error in main loop: {e}")
    finally:
        logger.info("Stopping maintenance scheduler...")
        scheduler.stop()

        logger.info("Closing LiraX client...")
        await core.close()

        logger.info("LiraX Bridge stopped")


if __name__ == "__main__":
    asyncio.run(main())
