"""
Shelly Collector - periodic metering and forwarding loop

Reads the Gen1 /status payload from every confirmed device, converts the
meters/emeters arrays into MeterReading records and forwards them to
InfluxDB. Per-device failures are logged and the loop moves on.
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional

import requests

from .core.exceptions import ForwardingError, MeteringError, ScanError
from .core.models import ConfirmedDevice, MeterReading
from .discovery import DiscoveryScanner
from .discovery_components.config_helper import ScraperConfig
from .discovery_components.device_identifier import DeviceIdentifier, STATUS_PATH, build_url
from .discovery_components.device_signatures import SignatureClassifier
from .discovery_components.host_scanner import NmapHostScanner
from .influx_client import InfluxClient

logger = logging.getLogger(__name__)


def _optional_float(data: Dict[str, Any], key: str) -> Optional[float]:
    value = data.get(key)
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_status(payload: Dict[str, Any], device: ConfirmedDevice, timestamp: int) -> List[MeterReading]:
    """
    Extract readings from a Gen1 status payload.

    meters[].total is reported in watt-minutes and converted to Wh;
    emeters[].total is already Wh. Entries without a numeric power are skipped.
    """
    readings = []

    for kind, divisor in (("meter", 60.0), ("emeter", 1.0)):
        entries = payload.get(f"{kind}s") or []
        if not isinstance(entries, list):
            raise MeteringError(f"{device.address}: '{kind}s' is not a list")

        for channel, entry in enumerate(entries):
            if not isinstance(entry, dict):
                continue
            power = _optional_float(entry, "power")
            if power is None:
                continue
            total = _optional_float(entry, "total")
            readings.append(MeterReading(
                address=device.address,
                display_name=device.display_name,
                kind=kind,
                channel=channel,
                power=power,
                total=None if total is None else round(total / divisor, 3),
                voltage=_optional_float(entry, "voltage"),
                current=_optional_float(entry, "current"),
                is_valid=bool(entry.get("is_valid", True)),
                timestamp=timestamp,
            ))

    return readings


def read_meters(device: ConfirmedDevice, session: requests.Session, timeout: float,
                clock: Callable[[], float] = time.time) -> List[MeterReading]:
    """
    Fetch and parse the status payload of one device.

    Raises:
        MeteringError: transport failure, non-2xx status or unusable JSON
    """
    url = build_url(device.address, STATUS_PATH)
    try:
        response = session.get(url, timeout=timeout)
    except requests.exceptions.RequestException as e:
        raise MeteringError(f"{device.address}: status request failed: {e}") from e

    if not 200 <= response.status_code < 300:
        raise MeteringError(f"{device.address}: status returned {response.status_code}")

    try:
        payload = response.json()
    except ValueError as e:
        raise MeteringError(f"{device.address}: status body is not JSON: {e}") from e

    if not isinstance(payload, dict):
        raise MeteringError(f"{device.address}: status body is not a JSON object")

    return parse_status(payload, device, int(clock()))


class ShellyCollector:
    """Discovers devices (or uses static ones) and polls them on an interval"""

    def __init__(self, config: ScraperConfig,
                 discovery_scanner: Optional[DiscoveryScanner] = None,
                 influx_client: Optional[InfluxClient] = None,
                 session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()

        if discovery_scanner is None and config.discover:
            classifier = SignatureClassifier.from_yaml(config.signatures_file)
            discovery_scanner = DiscoveryScanner(
                host_scanner=NmapHostScanner(timeout=config.scan_timeout),
                identifier=DeviceIdentifier(classifier=classifier),
                workers=config.workers,
            )
        self.discovery_scanner = discovery_scanner

        self.influx_client = influx_client or InfluxClient(
            config.influx_url,
            config.database,
            username=config.influx_username,
            password=config.influx_password,
            timeout=config.request_timeout,
        )

        self.devices: List[ConfirmedDevice] = []
        self.cycles = 0
        self._stop_event = threading.Event()

    def resolve_devices(self) -> List[ConfirmedDevice]:
        """
        Discover devices or build them from the configured addresses.

        Raises:
            ScanError: discovery mode and the scan failed
        """
        if self.config.discover:
            logger.info(f"Discovering Shelly devices on network: {self.config.network}")
            self.devices = self.discovery_scanner.discover(self.config.network)
        else:
            self.devices = [ConfirmedDevice(address=ip) for ip in self.config.shelly_ips]
        return self.devices

    def scrape_and_push(self, device: ConfirmedDevice) -> int:
        """Read one device and forward its readings; returns records written"""
        readings = read_meters(device, self.session, self.config.request_timeout)
        if not readings:
            logger.debug(f"{device.label}: status payload contained no meter readings")
            return 0
        return self.influx_client.write(readings)

    def _should_rediscover(self) -> bool:
        if not self.config.discover:
            return False
        if not self.devices:
            return True
        every = self.config.rediscover_cycles
        return every > 0 and self.cycles > 0 and self.cycles % every == 0

    def _rediscover(self) -> None:
        try:
            self.resolve_devices()
        except ScanError as e:
            logger.error(f"Discovery failed, no devices this cycle: {e}")
            self.devices = []

    def run_cycle(self) -> Dict[str, int]:
        """Poll every device once"""
        if self._should_rediscover():
            self._rediscover()

        stats = {"devices": len(self.devices), "succeeded": 0, "failed": 0, "records": 0}
        for device in self.devices:
            try:
                written = self.scrape_and_push(device)
            except (MeteringError, ForwardingError) as e:
                stats["failed"] += 1
                logger.warning(f"Error during scrape from {device.label}: {e}")
                continue
            stats["succeeded"] += 1
            stats["records"] += written
            logger.info(f"Successfully scraped and pushed data from {device.label} ({written} record(s))")

        self.cycles += 1
        return stats

    def run(self, max_cycles: Optional[int] = None) -> int:
        """
        Run the polling loop until stopped.

        Args:
            max_cycles: Stop after this many cycles (None runs until stop())

        Returns:
            Number of cycles completed
        """
        logger.info(f"InfluxDB URL: {self.config.influx_url}")
        logger.info(f"Database: {self.config.database}")
        logger.info(f"Interval: {self.config.interval}s")

        while not self._stop_event.is_set():
            self.run_cycle()
            if max_cycles is not None and self.cycles >= max_cycles:
                break
            self._stop_event.wait(self.config.interval)

        return self.cycles

    def stop(self) -> None:
        self._stop_event.set()

    def close(self) -> None:
        self.session.close()
        self.influx_client.close()
        if self.discovery_scanner is not None:
            self.discovery_scanner.identifier.prober.close()
