# torrent_clients/log.py
import logging
import sys

NOISY_LOGGERS = ("httpcore", "httpx", "hpack")


def setup_logging(level=logging.INFO):
    """Configures the root logger for command-line and service use."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    logging.basicConfig(
        level=level,
        format='[%(asctime)s] [%(name)s] [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        stream=sys.stderr
    )

    # Silence noisy libraries
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
