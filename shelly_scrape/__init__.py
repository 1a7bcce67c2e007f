"""
shelly-scrape - Shelly power monitoring collector

Finds Shelly devices on a local network, polls them for metering data and
forwards readings to InfluxDB.

Usage Examples:

# One discovery pass
from shelly_scrape import discover_devices
devices = discover_devices("192.168.1.0/24")

# Identify a single host
from shelly_scrape import DeviceIdentifier
DeviceIdentifier().is_shelly("192.168.1.50")
"""

from .core.exceptions import (
    ConfigError,
    ForwardingError,
    MeteringError,
    ScanError,
    ShellyScrapeError,
    SignatureError,
)
from .core.models import ConfirmedDevice, HostCandidate, MeterReading
from .discovery import DiscoveryScanner, discover_devices, parse_scan_output, parse_scan_report_line
from .discovery_components.device_identifier import DeviceIdentifier
from .discovery_components.device_signatures import ClassificationVerdict, SignatureClassifier, classify
from .discovery_components.host_scanner import HostScanner, NmapHostScanner, ScanOutput
from .discovery_components.probe_scanner import NetworkProber, ProbeResult

__version__ = "0.1.0"
__all__ = [
    "ClassificationVerdict",
    "ConfigError",
    "ConfirmedDevice",
    "DeviceIdentifier",
    "DiscoveryScanner",
    "ForwardingError",
    "HostCandidate",
    "HostScanner",
    "MeterReading",
    "MeteringError",
    "NetworkProber",
    "NmapHostScanner",
    "ProbeResult",
    "ScanError",
    "ScanOutput",
    "ShellyScrapeError",
    "SignatureClassifier",
    "SignatureError",
    "classify",
    "discover_devices",
    "parse_scan_output",
    "parse_scan_report_line",
]
