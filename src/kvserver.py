import asyncio
import logging

from config import ServerConfig
from server import start_server

log = logging.getLogger(__name__)


def main() -> None:
    config = ServerConfig.from_env()
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        asyncio.run(start_server(config))
    except KeyboardInterrupt:
        log.info("Shutting down")


if __name__ == "__main__":
    main()
