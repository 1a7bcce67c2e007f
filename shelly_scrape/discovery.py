"""
Shelly Discovery - scan a network range and keep the hosts that are Shelly devices

Runs a ping sweep, parses the scan report into host candidates and passes
each candidate through the device identifier. Only a failed scan raises;
per-host probe outcomes end up in the identifier's verdict.
"""

import logging
import string
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, List, Optional

from .core.exceptions import ScanError
from .core.models import ConfirmedDevice, HostCandidate
from .discovery_components.device_identifier import DeviceIdentifier
from .discovery_components.device_signatures import ClassificationVerdict, SignatureClassifier
from .discovery_components.host_scanner import DEFAULT_SCAN_TIMEOUT, HostScanner, NmapHostScanner

logger = logging.getLogger(__name__)

SCAN_REPORT_MARKER = "Nmap scan report for"


def parse_scan_report_line(line: str) -> Optional[HostCandidate]:
    """
    Parse one scan report line.

    Supports "Nmap scan report for host.lan (192.168.1.100)" and
    "Nmap scan report for 192.168.1.100". Returns None for anything else.
    """
    marker_pos = line.find(SCAN_REPORT_MARKER)
    if marker_pos < 0:
        return None

    open_pos = line.rfind('(')
    if open_pos >= 0:
        close_pos = line.rfind(')')
        if close_pos <= open_pos:
            return None
        address = line[open_pos + 1:close_pos].strip()
        if not address:
            return None
        name = line[marker_pos + len(SCAN_REPORT_MARKER):open_pos].strip()
        if name and name != address:
            return HostCandidate(address=address, display_name=name)
        return HostCandidate(address=address)

    tokens = line.split()
    if not tokens:
        return None
    address = tokens[-1]
    if address[0] in string.digits:
        return HostCandidate(address=address)
    return None


def parse_scan_output(output: str) -> List[HostCandidate]:
    """Parse scan stdout into candidates, one per distinct address, in report order"""
    candidates = []
    seen = set()
    for line in output.splitlines():
        if SCAN_REPORT_MARKER not in line:
            continue
        candidate = parse_scan_report_line(line)
        if candidate is None:
            logger.debug(f"Skipping unparseable scan line: {line.strip()}")
            continue
        if candidate.address in seen:
            logger.debug(f"Skipping repeated scan report for {candidate.address}")
            continue
        seen.add(candidate.address)
        candidates.append(candidate)
    return candidates


class DiscoveryScanner:
    """One discovery pass: scan, parse, identify"""

    def __init__(self, host_scanner: Optional[HostScanner] = None,
                 identifier: Optional[DeviceIdentifier] = None,
                 workers: int = 1):
        """
        Args:
            host_scanner: Backend running the ping sweep (nmap by default)
            identifier: Device identifier used for every candidate
            workers: Hosts identified in parallel; 1 keeps the pass sequential
        """
        if workers < 1:
            raise ValueError("workers must be at least 1")
        self.host_scanner = host_scanner or NmapHostScanner()
        self.identifier = identifier or DeviceIdentifier()
        self.workers = workers

    def scan_candidates(self, network_range: str) -> List[HostCandidate]:
        """Run the scan and return the parsed candidates"""
        logger.info(f"Running host discovery scan on network: {network_range}")
        output = self.host_scanner.scan(network_range)

        if not output.ok:
            stderr = output.stderr.strip()
            raise ScanError(f"nmap command failed (exit {output.returncode}): {stderr}",
                            returncode=output.returncode, stderr=output.stderr)

        logger.debug(f"nmap output: {output.stdout}")
        candidates = parse_scan_output(output.stdout)
        logger.info(f"Scan found {len(candidates)} live host(s)")
        return candidates

    def identify_candidates(self, candidates: Iterable[HostCandidate]) -> List[ConfirmedDevice]:
        """Identify candidates and keep the accepted ones in input order"""
        candidates = list(candidates)

        if self.workers > 1 and len(candidates) > 1:
            with ThreadPoolExecutor(max_workers=min(self.workers, len(candidates))) as executor:
                verdicts = list(executor.map(lambda c: self.identifier.identify(c.address), candidates))
        else:
            verdicts = [self.identifier.identify(c.address) for c in candidates]

        return [
            ConfirmedDevice.from_candidate(candidate)
            for candidate, verdict in zip(candidates, verdicts)
            if verdict is ClassificationVerdict.ACCEPT
        ]

    def discover(self, network_range: str) -> List[ConfirmedDevice]:
        """
        Run a full discovery pass.

        Args:
            network_range: CIDR or nmap range syntax, passed through unvalidated

        Returns:
            Confirmed Shelly devices in scan order

        Raises:
            ScanError: the scan could not run or exited non-zero
        """
        candidates = self.scan_candidates(network_range)
        devices = self.identify_candidates(candidates)
        logger.info(f"Discovery on {network_range} confirmed {len(devices)} of {len(candidates)} host(s)")
        return devices


def discover_devices(network_range: str, workers: int = 1,
                     scan_timeout: Optional[float] = DEFAULT_SCAN_TIMEOUT,
                     signatures_file: Optional[str] = None) -> List[ConfirmedDevice]:
    """
    Convenience function for a single discovery pass with default collaborators.

    Args:
        network_range: Network range to scan (e.g. 192.168.1.0/24)
        workers: Hosts identified in parallel
        scan_timeout: Seconds before the scan is abandoned
        signatures_file: Optional custom signatures YAML

    Returns:
        Confirmed Shelly devices
    """
    classifier = SignatureClassifier.from_yaml(signatures_file) if signatures_file else None
    scanner = DiscoveryScanner(
        host_scanner=NmapHostScanner(timeout=scan_timeout),
        identifier=DeviceIdentifier(classifier=classifier),
        workers=workers,
    )
    try:
        return scanner.discover(network_range)
    finally:
        scanner.identifier.prober.close()
