import logging
import sys


def configure_logging(level: str = "INFO") -> None:
    """
    Bind process-wide logging to stderr.

    Handlers are only installed once; later calls adjust the level.
    """
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    logging.getLogger("licensor").setLevel(level)
