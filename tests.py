#!/usr/bin/env python3
"""
Basic tests for the device identifier and network prober
"""

import threading
import time
import unittest
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from unittest.mock import patch, MagicMock

import requests

from shelly_scrape.discovery_components.device_identifier import (
    DeviceIdentifier,
    CONFIRMATION_PATHS,
    CONFIRMATION_TIMEOUT,
    PRIMARY_TIMEOUT,
    build_url,
)
from shelly_scrape.discovery_components.device_signatures import ClassificationVerdict, SignatureClassifier
from shelly_scrape.discovery_components.probe_scanner import NetworkProber, ProbeResult


def ok(url, body, status_code=200):
    return ProbeResult(url=url, succeeded=True, status_ok=200 <= status_code < 300,
                       status_code=status_code, body=body)


class FakeProber:
    """Serves canned probe results keyed by URL; unknown URLs fail like a refused connection"""

    def __init__(self, responses=None):
        self.responses = responses or {}
        self.calls = []

    def probe(self, url, timeout):
        self.calls.append((url, timeout))
        result = self.responses.get(url)
        if result is None:
            return ProbeResult.failure(url, "connection refused")
        return result

    @property
    def urls(self):
        return [url for url, _ in self.calls]


class TestDeviceIdentifier(unittest.TestCase):
    """Test the probe cascade"""

    ADDRESS = "192.168.1.50"

    def setUp(self):
        """Set up test fixtures"""
        self.classifier = SignatureClassifier.from_yaml()

    def url(self, path):
        return f"http://{self.ADDRESS}{path}"

    def identify(self, responses):
        prober = FakeProber(responses)
        identifier = DeviceIdentifier(prober=prober, classifier=self.classifier)
        return identifier.identify(self.ADDRESS), prober

    def test_shelly_endpoint_short_circuits(self):
        """A /shelly body naming the brand is accepted with a single probe"""
        verdict, prober = self.identify({
            self.url("/shelly"): ok(self.url("/shelly"), '{"type":"SHSW-PM","mac":"AABBCC","auth":false}'
                                                         ' Shelly 1PM'),
        })
        self.assertEqual(verdict, ClassificationVerdict.ACCEPT)
        self.assertEqual(prober.calls, [(self.url("/shelly"), PRIMARY_TIMEOUT)])

    def test_camera_on_shelly_endpoint_rejected_immediately(self):
        """An exclusion match on /shelly stops the cascade"""
        verdict, prober = self.identify({
            self.url("/shelly"): ok(self.url("/shelly"), "<html>Hikvision shelly</html>"),
            self.url("/status"): ok(self.url("/status"), '{"relays": []}'),
        })
        self.assertEqual(verdict, ClassificationVerdict.REJECT)
        self.assertEqual(len(prober.calls), 1)

    def test_unreachable_shelly_falls_back_to_status(self):
        """Transport failure on /shelly moves on to /status with the extended keywords"""
        verdict, prober = self.identify({
            self.url("/status"): ok(self.url("/status"), '{"wifi_sta": {"connected": true}}'),
        })
        self.assertEqual(verdict, ClassificationVerdict.ACCEPT)
        self.assertEqual(prober.urls, [self.url("/shelly"), self.url("/status")])
        self.assertEqual(prober.calls[1][1], PRIMARY_TIMEOUT)

    def test_inconclusive_shelly_body_falls_back_to_status(self):
        """A readable /shelly body without keywords is not a rejection"""
        verdict, prober = self.identify({
            self.url("/shelly"): ok(self.url("/shelly"), "Not Found", status_code=404),
            self.url("/status"): ok(self.url("/status"), '{"meters": [{"power": 0}]}'),
        })
        self.assertEqual(verdict, ClassificationVerdict.ACCEPT)
        self.assertEqual(len(prober.calls), 2)

    def test_both_primary_endpoints_unreachable(self):
        """No answer on /shelly or /status rejects without a confirmation sweep"""
        verdict, prober = self.identify({})
        self.assertEqual(verdict, ClassificationVerdict.REJECT)
        self.assertEqual(prober.urls, [self.url("/shelly"), self.url("/status")])

    def test_status_without_keywords_rejected(self):
        """A readable /status body with no Shelly fields rejects"""
        verdict, prober = self.identify({
            self.url("/status"): ok(self.url("/status"), '{"uptime": 1234}'),
        })
        self.assertEqual(verdict, ClassificationVerdict.REJECT)
        self.assertEqual(len(prober.calls), 2)

    def test_unreadable_status_error_rejected(self):
        """An unreadable /status body with an error status rejects"""
        status = ProbeResult(url=self.url("/status"), succeeded=True, status_ok=False, status_code=500)
        verdict, prober = self.identify({self.url("/status"): status})
        self.assertEqual(verdict, ClassificationVerdict.REJECT)
        self.assertEqual(len(prober.calls), 2)

    def test_unreadable_status_runs_confirmation_sweep(self):
        """An unreadable successful /status triggers the sweep, which stops at the first decisive answer"""
        status = ProbeResult(url=self.url("/status"), succeeded=True, status_ok=True, status_code=200)
        verdict, prober = self.identify({
            self.url("/status"): status,
            self.url("/settings"): ok(self.url("/settings"), '{"name": "kitchen"}'),
            self.url("/ota"): ok(self.url("/ota"), '{"status": "idle", "relay": true}'),
            self.url("/meter/0"): ok(self.url("/meter/0"), '{"power": 12.5}'),
        })
        self.assertEqual(verdict, ClassificationVerdict.ACCEPT)
        self.assertEqual(prober.urls, [
            self.url("/shelly"), self.url("/status"), self.url("/settings"), self.url("/ota"),
        ])
        self.assertEqual(prober.calls[2][1], CONFIRMATION_TIMEOUT)

    def test_confirmation_sweep_fails_closed(self):
        """No decisive confirmation response means reject"""
        status = ProbeResult(url=self.url("/status"), succeeded=True, status_ok=True, status_code=200)
        verdict, prober = self.identify({
            self.url("/status"): status,
            self.url("/settings"): ok(self.url("/settings"), "forbidden", status_code=403),
            self.url("/ota"): ok(self.url("/ota"), "shelly", status_code=404),
        })
        self.assertEqual(verdict, ClassificationVerdict.REJECT)
        self.assertEqual(prober.urls[2:], [self.url(p) for p in CONFIRMATION_PATHS])

    def test_confirmation_sweep_exclusion_rejects(self):
        """A camera keyword during the sweep rejects without probing further"""
        status = ProbeResult(url=self.url("/status"), succeeded=True, status_ok=True, status_code=200)
        verdict, prober = self.identify({
            self.url("/status"): status,
            self.url("/settings"): ok(self.url("/settings"), '{"device": "IPCam", "relay": 1}'),
        })
        self.assertEqual(verdict, ClassificationVerdict.REJECT)
        self.assertEqual(len(prober.calls), 3)

    def test_identify_is_repeatable(self):
        """Same responses, same verdict"""
        prober = FakeProber({self.url("/status"): ok(self.url("/status"), '{"relays": [{"ison": false}]}')})
        identifier = DeviceIdentifier(prober=prober, classifier=self.classifier)

        first = identifier.identify(self.ADDRESS)
        second = identifier.identify(self.ADDRESS)

        self.assertEqual(first, second)
        self.assertEqual(first, ClassificationVerdict.ACCEPT)
        self.assertEqual(len(prober.calls), 4)

    def test_is_shelly(self):
        prober = FakeProber({self.url("/shelly"): ok(self.url("/shelly"), "shelly")})
        identifier = DeviceIdentifier(prober=prober, classifier=self.classifier)
        self.assertTrue(identifier.is_shelly(self.ADDRESS))
        self.assertFalse(identifier.is_shelly("192.168.1.51"))


class TestBuildUrl(unittest.TestCase):

    def test_ipv4(self):
        self.assertEqual(build_url("10.0.0.5", "/shelly"), "http://10.0.0.5/shelly")

    def test_ipv6_is_bracketed(self):
        self.assertEqual(build_url("fe80::1", "/status"), "http://[fe80::1]/status")

    def test_bracketed_ipv6_unchanged(self):
        self.assertEqual(build_url("[fe80::1]", "/ota"), "http://[fe80::1]/ota")


class TestNetworkProber(unittest.TestCase):
    """Test the NetworkProber class"""

    def setUp(self):
        """Set up test fixtures"""
        self.session = MagicMock()
        self.prober = NetworkProber(session=self.session)

    def make_response(self, status_code=200, chunks=(b'{"type": "SHSW-1"}',), encoding='utf-8'):
        response = MagicMock()
        response.status_code = status_code
        response.encoding = encoding
        response.iter_content.return_value = iter(chunks)
        return response

    def test_successful_probe(self):
        """Test a 200 response with a readable body"""
        response = self.make_response()
        self.session.get.return_value = response

        result = self.prober.probe("http://10.0.0.5/shelly", 3)

        self.assertTrue(result.succeeded)
        self.assertTrue(result.status_ok)
        self.assertEqual(result.status_code, 200)
        self.assertEqual(result.body, '{"type": "SHSW-1"}')
        args, kwargs = self.session.get.call_args
        self.assertEqual(args[0], "http://10.0.0.5/shelly")
        self.assertEqual(kwargs["timeout"].total, 3)
        self.assertTrue(kwargs["stream"])
        response.close.assert_called_once()

    def test_error_status(self):
        """Test a 404 response still carries its body"""
        self.session.get.return_value = self.make_response(status_code=404, chunks=(b"Not Found",))

        result = self.prober.probe("http://10.0.0.5/shelly", 3)

        self.assertTrue(result.succeeded)
        self.assertFalse(result.status_ok)
        self.assertEqual(result.body, "Not Found")

    def test_connection_error(self):
        """Test transport errors become failed results"""
        self.session.get.side_effect = requests.exceptions.ConnectionError("refused")

        result = self.prober.probe("http://10.0.0.5/shelly", 3)

        self.assertFalse(result.succeeded)
        self.assertFalse(result.status_ok)
        self.assertIsNone(result.body)
        self.assertIn("refused", result.error)

    def test_timeout(self):
        """Test request timeouts become failed results"""
        self.session.get.side_effect = requests.exceptions.ReadTimeout("timed out")

        result = self.prober.probe("http://10.0.0.5/status", 3)

        self.assertFalse(result.succeeded)

    def test_body_past_deadline(self):
        """Test a body that streams past the deadline is a transport failure"""
        response = self.make_response()
        self.session.get.return_value = response

        with patch('shelly_scrape.discovery_components.probe_scanner.time.monotonic', side_effect=[0.0, 1.0, 10.0]):
            result = self.prober.probe("http://10.0.0.5/status", 3)

        self.assertFalse(result.succeeded)
        self.assertIsNone(result.body)
        response.close.assert_called_once()

    def test_unreadable_body(self):
        """Test a body that breaks mid-stream keeps the status but has no text"""
        response = self.make_response()
        response.iter_content.side_effect = requests.exceptions.ChunkedEncodingError("broken")
        self.session.get.return_value = response

        result = self.prober.probe("http://10.0.0.5/status", 3)

        self.assertTrue(result.succeeded)
        self.assertTrue(result.status_ok)
        self.assertIsNone(result.body)

    def test_undecodable_body(self):
        """Test bytes that do not decode give no body"""
        self.session.get.return_value = self.make_response(chunks=(b"\xff\xfe\xfa",), encoding='utf-8')

        result = self.prober.probe("http://10.0.0.5/status", 3)

        self.assertTrue(result.succeeded)
        self.assertIsNone(result.body)

    def test_unknown_encoding_falls_back_to_utf8(self):
        self.session.get.return_value = self.make_response(chunks=(b"relay",), encoding='x-no-such-codec')

        result = self.prober.probe("http://10.0.0.5/status", 3)

        self.assertEqual(result.body, "relay")

    def test_body_is_capped(self):
        prober = NetworkProber(session=self.session, max_body_bytes=4)
        self.session.get.return_value = self.make_response(chunks=(b"shel", b"ly-extra"))

        result = prober.probe("http://10.0.0.5/shelly", 3)

        self.assertEqual(result.body, "shel")

    def test_headers_after_deadline(self):
        """Test a response whose headers arrive past the deadline is a timeout"""
        response = self.make_response()
        self.session.get.return_value = response

        with patch('shelly_scrape.discovery_components.probe_scanner.time.monotonic', side_effect=[0.0, 5.0]):
            result = self.prober.probe("http://10.0.0.5/shelly", 3)

        self.assertFalse(result.succeeded)
        response.iter_content.assert_not_called()
        response.close.assert_called_once()

    def test_capped_body_cut_inside_character(self):
        """Test a cap landing inside a multi-byte character keeps the readable prefix"""
        prober = NetworkProber(session=self.session, max_body_bytes=8)
        self.session.get.return_value = self.make_response(chunks=("shelly é".encode('utf-8'),))

        result = prober.probe("http://10.0.0.5/shelly", 3)

        self.assertEqual(result.body, "shelly ")
        self.assertEqual(SignatureClassifier.from_yaml().classify(result.body, {"shelly"}),
                         ClassificationVerdict.ACCEPT)

    def test_complete_body_with_broken_last_character(self):
        """Test an uncut body ending in half a character is still undecodable"""
        self.session.get.return_value = self.make_response(chunks=(b"shelly \xc3",))

        result = self.prober.probe("http://10.0.0.5/shelly", 3)

        self.assertTrue(result.succeeded)
        self.assertIsNone(result.body)


class TrickleHandler(BaseHTTPRequestHandler):
    """Announces a 20 byte body and sends one byte every 0.3 seconds"""

    def do_GET(self):
        self.send_response(200)
        self.send_header("Content-Length", "20")
        self.end_headers()
        for _ in range(20):
            try:
                self.wfile.write(b"s")
                self.wfile.flush()
            except OSError:
                return
            time.sleep(0.3)

    def log_message(self, format, *args):
        pass


class TestNetworkProberSlowServer(unittest.TestCase):
    """Test the probe deadline against a real server that trickles its body"""

    def setUp(self):
        self.server = ThreadingHTTPServer(("127.0.0.1", 0), TrickleHandler)
        self.thread = threading.Thread(target=self.server.serve_forever, daemon=True)
        self.thread.start()
        self.url = f"http://127.0.0.1:{self.server.server_address[1]}/shelly"
        self.prober = NetworkProber()

    def tearDown(self):
        self.prober.close()
        self.server.shutdown()
        self.server.server_close()
        self.thread.join(timeout=5)

    def test_trickled_body_stops_at_deadline(self):
        start = time.monotonic()
        result = self.prober.probe(self.url, 1.0)
        elapsed = time.monotonic() - start

        self.assertFalse(result.succeeded)
        self.assertIn("timed out", result.error)
        self.assertLess(elapsed, 2.0)


if __name__ == "__main__":
    unittest.main(verbosity=2)
