#!/usr/bin/env python3
"""
shelly-scrape CLI

Scrape data from Shelly power monitoring devices and push it to InfluxDB.
"""

import argparse
import json
import logging
import signal
import sys

from .collector import ShellyCollector
from .core.exceptions import ConfigError, ScanError, SignatureError
from .core.logging import setup_logging
from .discovery_components.config_helper import (
    DEFAULT_DATABASE,
    DEFAULT_INFLUX_URL,
    DEFAULT_INTERVAL,
    DEFAULT_NETWORK,
    create_scraper_config,
)

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='shelly-scrape',
        description="Scrape data from Shelly power monitoring and push to Influx",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Poll a single device
  shelly-scrape --shelly-ip 192.168.1.50

  # Find devices with nmap, then poll them every 30 seconds
  shelly-scrape --discover --network 192.168.1.0/24 --interval 30

  # Only list the devices discovery would poll
  shelly-scrape --discover --list-devices
        """
    )
    # Defaults are None so environment and config-file values can fill the gaps
    parser.add_argument('-s', '--shelly-ip',
                        help='Shelly device IP address, comma-separated for several '
                             '(use --discover to find devices automatically)')
    parser.add_argument('-d', '--discover', action='store_true', default=None,
                        help='Automatically discover Shelly devices using nmap')
    parser.add_argument('-n', '--network',
                        help=f'Network range to scan for Shelly devices (default: {DEFAULT_NETWORK})')
    parser.add_argument('-i', '--influx-url',
                        help=f'InfluxDB URL (default: {DEFAULT_INFLUX_URL})')
    parser.add_argument('--database',
                        help=f'InfluxDB database name (default: {DEFAULT_DATABASE})')
    parser.add_argument('--interval', type=int,
                        help=f'Scrape interval in seconds (default: {DEFAULT_INTERVAL})')
    parser.add_argument('-c', '--config', help='YAML configuration file')
    parser.add_argument('--workers', type=int,
                        help='Hosts identified in parallel during discovery (default: 1)')
    parser.add_argument('--scan-timeout', type=float,
                        help='Seconds before the nmap scan is abandoned (default: 300)')
    parser.add_argument('--rediscover-cycles', type=int,
                        help='Re-run discovery every N polling cycles, 0 disables (default: 0)')
    parser.add_argument('--signatures', dest='signatures_file',
                        help='Custom device signatures YAML file')
    parser.add_argument('--once', action='store_true',
                        help='Run a single polling cycle and exit')
    parser.add_argument('--list-devices', action='store_true',
                        help='Print the resolved devices as JSON and exit')
    parser.add_argument('-v', '--verbose', action='store_true', default=None,
                        help='Enable verbose debug logging')
    return parser


def main(argv=None) -> int:
    """Main CLI entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = create_scraper_config(
            config_file=args.config,
            shelly_ip=args.shelly_ip,
            discover=args.discover,
            network=args.network,
            influx_url=args.influx_url,
            database=args.database,
            interval=args.interval,
            workers=args.workers,
            scan_timeout=args.scan_timeout,
            rediscover_cycles=args.rediscover_cycles,
            signatures_file=args.signatures_file,
            verbose=args.verbose,
        )
    except ConfigError as e:
        parser.error(str(e))

    # keep stdout clean for the JSON device list
    setup_logging(debug=config.verbose, stream=sys.stderr if args.list_devices else None)
    logger.info("Starting Shelly scraper")

    try:
        collector = ShellyCollector(config)
    except SignatureError as e:
        logger.error(f"Cannot load device signatures: {e}")
        return 1

    try:
        try:
            devices = collector.resolve_devices()
        except ScanError as e:
            logger.error(f"Discovery failed: {e}")
            return 1

        if args.list_devices:
            print(json.dumps([device.to_dict() for device in devices]))
            return 0

        if not devices:
            logger.warning("No Shelly devices found!")
            return 0

        logger.info(f"Found {len(devices)} Shelly device(s):")
        for device in devices:
            logger.info(f"  {device.label}")

        signal.signal(signal.SIGTERM, lambda signum, frame: collector.stop())
        collector.run(max_cycles=1 if args.once else None)
        return 0

    except KeyboardInterrupt:
        logger.info("Scraper interrupted by user")
        return 0
    finally:
        collector.close()


if __name__ == "__main__":
    sys.exit(main())
