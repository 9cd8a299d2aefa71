"""Run the bridge with uvicorn: ``python -m agent_bridge``."""

import uvicorn

from agent_bridge.config import settings


def main() -> None:
    uvicorn.run(
        "agent_bridge.main:app",
        host=settings.server.host,
        port=settings.server.port,
    )


if __name__ == "__main__":
    main()
