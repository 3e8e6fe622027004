import logging


def setup_logging(level: str = "INFO") -> None:
    """Configure root logging once at process start."""
    logging.basicConfig(
        level=level.upper(),
        format='%(asctime)s:%(name)s:%(levelname)s:%(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        handlers=[logging.StreamHandler()],
        force=True,
    )
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger(__name__).info(f"Logging initialised (level={level.upper()})")
