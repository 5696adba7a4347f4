"""Example showing how to run the worker pool against Redis."""

import asyncio
import sys

from tripforge import ProcessingService
from tripforge.config import load_config


async def main():
    config = load_config()
    config.queue.backend = "redis"
    if len(sys.argv) > 1:
        config.queue.concurrency = int(sys.argv[1])

    service = ProcessingService(config)

    # Start workers and the stuck-job monitor
    await service.start()
    try:
        await asyncio.Event().wait()
    finally:
        await service.stop(timeout=30)


if __name__ == "__main__":
    asyncio.run(main())
