"""Package logger and its command-line setup."""

import logging
import sys

logger = logging.getLogger("fwdmuon")


def configure_logging(verbose: bool = False) -> None:
    """Send package messages to stdout, one line per record."""
    logging.basicConfig(format="[%(levelname)s] %(message)s", stream=sys.stdout)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
