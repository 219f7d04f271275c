import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once; later calls only adjust the level."""
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=LOG_FORMAT)
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
