#!/usr/bin/env python3
"""
End-to-end discovery scenario: a camera and a Shelly plug on the same network

The camera answers /shelly with its vendor page and must be dropped; the
plug answers with its identification payload and must be kept.
"""

import unittest

from shelly_scrape.core.models import ConfirmedDevice
from shelly_scrape.discovery import DiscoveryScanner
from shelly_scrape.discovery_components.device_identifier import DeviceIdentifier
from shelly_scrape.discovery_components.device_signatures import SignatureClassifier
from shelly_scrape.discovery_components.host_scanner import HostScanner, ScanOutput
from shelly_scrape.discovery_components.probe_scanner import ProbeResult


SCAN_OUTPUT = """Starting Nmap 7.94 ( https://nmap.org ) at 2024-05-01 10:00 CEST
Nmap scan report for ipcam-frontdoor.lan (192.168.1.30)
Host is up (0.0030s latency).
Nmap scan report for 192.168.1.31
Host is up (0.0051s latency).
Nmap done: 256 IP addresses (2 hosts up) scanned in 2.10 seconds
"""

CAMERA_PAGE = "<html><head><title>HIKVISION Web Client</title></head><body>Login</body></html>"
SHELLY_PAYLOAD = '{"type":"SHPLG-S","mac":"7C87CE123456","auth":false,"fw":"20230913-114008/v1.14.0-gcb84623",' \
                 '"longid":1,"name":"shelly plug"}'


class CannedScanner(HostScanner):

    def scan(self, network_range):
        return ScanOutput(returncode=0, stdout=SCAN_OUTPUT)


class CannedProber:

    def __init__(self, bodies):
        self.bodies = bodies
        self.urls = []

    def probe(self, url, timeout):
        self.urls.append(url)
        if url not in self.bodies:
            return ProbeResult.failure(url, "connection refused")
        return ProbeResult(url=url, succeeded=True, status_ok=True, status_code=200, body=self.bodies[url])


class TestCameraAndShellyScenario(unittest.TestCase):

    def setUp(self):
        self.prober = CannedProber({
            "http://192.168.1.30/shelly": CAMERA_PAGE,
            "http://192.168.1.30/status": '{"relay": "also present on this camera"}',
            "http://192.168.1.31/shelly": SHELLY_PAYLOAD,
        })
        identifier = DeviceIdentifier(prober=self.prober, classifier=SignatureClassifier.from_yaml())
        self.scanner = DiscoveryScanner(host_scanner=CannedScanner(), identifier=identifier)

    def test_only_the_shelly_is_confirmed(self):
        devices = self.scanner.discover("192.168.1.0/24")
        self.assertEqual(devices, [ConfirmedDevice(address="192.168.1.31")])

    def test_camera_rejected_on_first_probe(self):
        self.scanner.discover("192.168.1.0/24")
        camera_urls = [url for url in self.prober.urls if "192.168.1.30" in url]
        self.assertEqual(camera_urls, ["http://192.168.1.30/shelly"])

    def test_repeated_passes_agree(self):
        first = self.scanner.discover("192.168.1.0/24")
        second = self.scanner.discover("192.168.1.0/24")
        self.assertEqual(first, second)


if __name__ == "__main__":
    unittest.main(verbosity=2)
