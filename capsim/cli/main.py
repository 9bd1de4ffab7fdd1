import argparse
import logging
import signal
import sys
import threading

from capsim.config.loader import load_config, parse_debug_flag
from capsim.core.constants import BUS_ENV_VAR, DEFAULT_BUS, DEFAULT_NAME
from capsim.core.errors import ConfigurationError
from capsim.core.simulator import Simulator

LOG_FORMAT = "%(asctime)s | %(levelname)-5s | %(threadName)s | %(message)s"


def build_parser() -> argparse.ArgumentParser:
    # -h is handled by hand: usage exits with status 1
    p = argparse.ArgumentParser(
        prog="capsim", add_help=False,
        description="Simulated payload computer: publishes camera/payload telemetry on a text bus.",
        epilog="example: capsim -b 10.0.0.255:2010",
    )
    p.add_argument("-h", dest="help", action="store_true", help="show help information")
    p.add_argument("-b", dest="bus", help=f"bus address (default is ${BUS_ENV_VAR} or {DEFAULT_BUS})")
    p.add_argument("-d", dest="debug", help="simulation mode on/off (default is false, use 'true' or '1')")
    p.add_argument("-n", dest="name", help=f'name (default is "{DEFAULT_NAME}")')
    p.add_argument("-c", "--config", help="Path to YAML config")
    p.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    p.add_argument("--duration", type=float, help="run for this many seconds, then shut down")
    return p


def main(argv=None) -> int:
    p = build_parser()
    args = p.parse_args(argv)
    if args.help:
        p.print_help()
        return 1

    try:
        cfg = load_config(
            args.config,
            bus=args.bus,
            name=args.name,
            debug=parse_debug_flag(args.debug) if args.debug is not None else None,
            log_level="DEBUG" if args.verbose else None,
        )
    except ConfigurationError as e:
        logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
        logging.error(f"configuration error: {e}")
        return 2

    logging.basicConfig(level=cfg.log_level, format=LOG_FORMAT)
    if args.bus:
        logging.info(f"-b {args.bus}")

    try:
        sim = Simulator(cfg)
    except ConfigurationError as e:
        logging.error(f"configuration error: {e}")
        return 2

    if threading.current_thread() is threading.main_thread():
        signal.signal(signal.SIGTERM, lambda signum, frame: sim.request_stop())
    sim.run(args.duration)
    return 1 if sim.error else 0


def cli():
    sys.exit(main())


if __name__ == "__main__":
    cli()
