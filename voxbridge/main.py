"""Main entrypoint for the Voxbridge call orchestrator."""

import uvicorn

from voxbridge import __version__
from voxbridge.config.settings import get_settings
from voxbridge.services.telephony.jambonz import create_app
from voxbridge.utils.logging import get_logger, setup_logging

logger = get_logger(__name__)


def main() -> None:
    """Main application entrypoint."""
    settings = get_settings()

    setup_logging(
        level=settings.log_level,
        format=settings.log_format,
    )

    logger.info(
        "voxbridge_starting",
        version=__version__,
        ws_host=settings.ws_host,
        ws_port=settings.ws_port,
        ws_path=settings.ws_path,
        llm_model=settings.ultravox_model,
        agent_configured=settings.agent_configured,
        transfer_delay_seconds=settings.transfer_delay_seconds,
    )
    if not settings.agent_configured:
        logger.warning("human_agent_not_configured")

    app = create_app(settings)

    try:
        uvicorn.run(
            app,
            host=settings.ws_host,
            port=settings.ws_port,
            log_config=None,
        )
    except Exception as e:
        logger.error("voxbridge_error", error=str(e))
        raise

    logger.info("voxbridge_stopped")


def run() -> None:
    """Run the application."""
    try:
        main()
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
