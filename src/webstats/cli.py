import argparse
import logging
import sys

import uvicorn

from webstats.config import ConfigError, load_settings, prepare_log_dir
from webstats.pixel_app import create_app

logger = logging.getLogger("webstats")


def configure_logging(level: str) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(level.upper())


def main(argv=None):
    parser = argparse.ArgumentParser(prog="webstats")
    parser.add_argument("--config", default=None, help="Path to config file (default: $WEBSTATS_CONFIG or config.toml)")
    args = parser.parse_args(argv)

    configure_logging("info")
    try:
        settings = load_settings(args.config)
        prepare_log_dir(settings)
    except ConfigError as exc:
        logger.error("%s", exc)
        sys.exit(1)
    logging.getLogger().setLevel(settings.log_level.upper())

    logger.info("Starting webstats on %s:%d (%s batches of %d)", settings.host, settings.port, settings.encoding, settings.batch_size)
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )
