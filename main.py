"""
Fleet Status Engine
===================
Entry point for the consistency reconciler. Run with: python main.py
"""

import asyncio
import logging

from src.bootstrap import build_services
from src.workers import reconciler

logging.basicConfig(level=logging.INFO)


async def run() -> None:
    services = await build_services()
    await reconciler.start_reconcile_loop(services.engine)
    try:
        await reconciler.wait_reconcile_loop()
    finally:
        await reconciler.stop_reconcile_loop()


if __name__ == "__main__":
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass
