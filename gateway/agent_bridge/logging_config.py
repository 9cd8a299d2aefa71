import logging
import sys
from pathlib import Path


def setup_logging(level: str = "INFO", logs_dir: Path = Path("logs")) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    try:
        logs_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(str(logs_dir / "bridge.log"), encoding="utf-8"))
    except OSError:
        # Read-only deployments still get stdout logging
        pass
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )
