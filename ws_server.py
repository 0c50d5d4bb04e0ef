"""Entrypoint for the reptrack WebSocket server."""

import asyncio

from reptrack.server import main


if __name__ == "__main__":
    asyncio.run(main())
