"""Process entry point: `python -m apphost.main` or the `apphost` script."""
import asyncio
import sys

from loguru import logger

from apphost.bootstrap import run
from apphost.core.exceptions import (
    ServerBindError,
    ServerStartError,
    WebSocketInitializationError,
)


def main() -> None:
    try:
        asyncio.run(run())
    except ServerBindError as e:
        logger.critical(f"Failed to start server: {e}")
        sys.exit(1)
    except (ServerStartError, WebSocketInitializationError) as e:
        logger.critical(f"Server startup aborted: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted, exiting")


if __name__ == '__main__':
    main()
