import asyncio
import sys
from pathlib import Path

from loguru import logger

from intent_relayer.config import RelayerSettings
from intent_relayer.errors import ConfigurationError
from intent_relayer.relayer import run_relayer


def main():
    settings = RelayerSettings()
    logger.remove()
    logger.add(lambda msg: print(msg, end=""), level=settings.log_level)
    if settings.log_dir:
        log_dir = Path(settings.log_dir)
        logger.add(log_dir / "error.log", level="ERROR")
        logger.add(log_dir / "combined.log", level="DEBUG")

    logger.info("Starting relayer...")
    try:
        asyncio.run(run_relayer(settings))
    except ConfigurationError as e:
        logger.error("{}", e)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Relayer interrupted; shutting down.")


if __name__ == "__main__":
    main()
