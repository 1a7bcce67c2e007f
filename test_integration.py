#!/usr/bin/env python3
"""
Test the polling loop: metering, InfluxDB forwarding and the CLI wiring
"""

import io
import json
import sys
import unittest
from unittest.mock import patch, MagicMock

import requests

from shelly_scrape import cli
from shelly_scrape.collector import ShellyCollector, parse_status, read_meters
from shelly_scrape.core.exceptions import ForwardingError, MeteringError, ScanError
from shelly_scrape.core.models import ConfirmedDevice, MeterReading
from shelly_scrape.discovery_components.config_helper import create_scraper_config
from shelly_scrape.influx_client import InfluxClient, to_line_protocol


PLUG_STATUS = {
    "wifi_sta": {"connected": True, "ssid": "home", "ip": "192.168.1.31", "rssi": -58},
    "relays": [{"ison": True, "has_timer": False}],
    "meters": [{"power": 42.5, "overpower": 0.0, "is_valid": True, "timestamp": 1714557600,
                "counters": [42.1, 41.9, 42.3], "total": 6000}],
    "temperature": 31.2,
}

EM_STATUS = {
    "emeters": [
        {"power": 230.4, "reactive": 10.2, "voltage": 231.7, "current": 1.02, "is_valid": True, "total": 1520.5},
        {"power": 0, "voltage": 231.7, "is_valid": False},
    ],
}


def json_response(payload, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    return response


class TestParseStatus(unittest.TestCase):

    def setUp(self):
        self.device = ConfirmedDevice("192.168.1.31", "shellyplug-s.lan")

    def test_plug_meter(self):
        readings = parse_status(PLUG_STATUS, self.device, 1714557601)
        self.assertEqual(readings, [MeterReading(
            address="192.168.1.31",
            display_name="shellyplug-s.lan",
            kind="meter",
            channel=0,
            power=42.5,
            total=100.0,
            is_valid=True,
            timestamp=1714557601,
        )])

    def test_energy_meter_channels(self):
        readings = parse_status(EM_STATUS, self.device, 100)
        self.assertEqual([(r.kind, r.channel) for r in readings], [("emeter", 0), ("emeter", 1)])
        self.assertEqual(readings[0].total, 1520.5)
        self.assertEqual(readings[0].voltage, 231.7)
        self.assertEqual(readings[0].current, 1.02)
        self.assertFalse(readings[1].is_valid)
        self.assertIsNone(readings[1].total)

    def test_no_meters(self):
        self.assertEqual(parse_status({"relays": [{"ison": False}]}, self.device, 100), [])

    def test_entries_without_power_skipped(self):
        self.assertEqual(parse_status({"meters": [{"is_valid": True}, "junk"]}, self.device, 100), [])

    def test_malformed_meters(self):
        with self.assertRaises(MeteringError):
            parse_status({"meters": {"power": 1}}, self.device, 100)


class TestReadMeters(unittest.TestCase):

    def setUp(self):
        self.session = MagicMock()
        self.device = ConfirmedDevice("192.168.1.31")

    def test_reads_status_endpoint(self):
        self.session.get.return_value = json_response(PLUG_STATUS)

        readings = read_meters(self.device, self.session, 5, clock=lambda: 1714557601.7)

        self.session.get.assert_called_once_with("http://192.168.1.31/status", timeout=5)
        self.assertEqual(len(readings), 1)
        self.assertEqual(readings[0].timestamp, 1714557601)

    def test_transport_failure(self):
        self.session.get.side_effect = requests.exceptions.ConnectTimeout("timed out")
        with self.assertRaises(MeteringError):
            read_meters(self.device, self.session, 5)

    def test_error_status(self):
        self.session.get.return_value = json_response({}, status_code=401)
        with self.assertRaises(MeteringError):
            read_meters(self.device, self.session, 5)

    def test_invalid_json(self):
        response = json_response(None)
        response.json.side_effect = ValueError("Expecting value")
        self.session.get.return_value = response
        with self.assertRaises(MeteringError):
            read_meters(self.device, self.session, 5)

    def test_non_object_json(self):
        self.session.get.return_value = json_response([1, 2, 3])
        with self.assertRaises(MeteringError):
            read_meters(self.device, self.session, 5)


class TestInfluxClient(unittest.TestCase):

    def setUp(self):
        self.reading = MeterReading(address="192.168.1.31", display_name="living room, plug", kind="meter",
                                    channel=0, power=42.5, total=100.0, timestamp=1714557601)

    def test_line_protocol(self):
        line = to_line_protocol(self.reading)
        self.assertEqual(
            line,
            "shelly_power,host=192.168.1.31,name=living\\ room\\,\\ plug,kind=meter,channel=0 "
            "power=42.5,total=100.0,valid=true 1714557601"
        )

    def test_line_protocol_optional_fields(self):
        reading = MeterReading(address="10.0.0.5", kind="emeter", channel=1, power=0, voltage=231.7,
                               current=0.5, is_valid=False, timestamp=5)
        self.assertEqual(
            to_line_protocol(reading),
            "shelly_power,host=10.0.0.5,kind=emeter,channel=1 power=0.0,voltage=231.7,current=0.5,valid=false 5"
        )

    def test_write(self):
        session = MagicMock()
        session.post.return_value = MagicMock(status_code=204)
        client = InfluxClient("http://influx:8086/", "shelly_data", username="writer", password="pw",
                              session=session)

        written = client.write([self.reading, self.reading])

        self.assertEqual(written, 2)
        args, kwargs = session.post.call_args
        self.assertEqual(args[0], "http://influx:8086/write")
        self.assertEqual(kwargs["params"], {"db": "shelly_data", "precision": "s", "u": "writer", "p": "pw"})
        self.assertEqual(kwargs["data"].decode('utf-8').count("\n"), 2)

    def test_write_nothing(self):
        session = MagicMock()
        client = InfluxClient("http://influx:8086", "shelly_data", session=session)
        self.assertEqual(client.write([]), 0)
        session.post.assert_not_called()

    def test_write_rejected(self):
        session = MagicMock()
        session.post.return_value = MagicMock(status_code=404, text='{"error":"database not found: \\"x\\""}')
        client = InfluxClient("http://influx:8086", "x", session=session)
        with self.assertRaises(ForwardingError) as ctx:
            client.write([self.reading])
        self.assertEqual(ctx.exception.status_code, 404)

    def test_write_transport_failure(self):
        session = MagicMock()
        session.post.side_effect = requests.exceptions.ConnectionError("refused")
        client = InfluxClient("http://influx:8086", "shelly_data", session=session)
        with self.assertRaises(ForwardingError):
            client.write([self.reading])


class TestErrors(unittest.TestCase):

    def test_optional_codes_default_to_none(self):
        self.assertIsNone(ScanError("nmap missing").returncode)
        self.assertIsNone(ForwardingError("influx down").status_code)
        self.assertEqual(ForwardingError("rejected", status_code=400).status_code, 400)


class TestShellyCollector(unittest.TestCase):

    def make_collector(self, discover=False, rediscover_cycles=0, discovery_scanner=None):
        if discover:
            config = create_scraper_config(environ={}, discover=True, rediscover_cycles=rediscover_cycles)
        else:
            config = create_scraper_config(environ={}, shelly_ip="192.168.1.31,192.168.1.32")
        self.session = MagicMock()
        self.influx = MagicMock()
        self.influx.write.side_effect = lambda readings: len(list(readings))
        return ShellyCollector(config, discovery_scanner=discovery_scanner,
                               influx_client=self.influx, session=self.session)

    def test_static_devices(self):
        collector = self.make_collector()
        devices = collector.resolve_devices()
        self.assertEqual([d.address for d in devices], ["192.168.1.31", "192.168.1.32"])

    def test_cycle_continues_after_device_failure(self):
        collector = self.make_collector()
        collector.resolve_devices()
        self.session.get.side_effect = [
            requests.exceptions.ConnectTimeout("timed out"),
            json_response(PLUG_STATUS),
        ]

        stats = collector.run_cycle()

        self.assertEqual(stats, {"devices": 2, "succeeded": 1, "failed": 1, "records": 1})
        self.assertEqual(self.influx.write.call_count, 1)

    def test_forwarding_failure_is_logged_not_raised(self):
        collector = self.make_collector()
        collector.resolve_devices()
        self.session.get.return_value = json_response(PLUG_STATUS)
        self.influx.write.side_effect = ForwardingError("influx down")

        stats = collector.run_cycle()

        self.assertEqual(stats["failed"], 2)

    def test_run_stops_after_max_cycles(self):
        collector = self.make_collector()
        collector.resolve_devices()
        self.session.get.return_value = json_response({})

        with patch.object(collector._stop_event, 'wait') as mock_wait:
            cycles = collector.run(max_cycles=3)

        self.assertEqual(cycles, 3)
        self.assertEqual(mock_wait.call_count, 2)
        mock_wait.assert_called_with(60)

    def test_stop(self):
        collector = self.make_collector()
        collector.stop()
        self.assertEqual(collector.run(), 0)

    def test_failed_rediscovery_yields_empty_cycle_then_retries(self):
        discovery = MagicMock()
        discovery.discover.side_effect = [ScanError("nmap missing"), [ConfirmedDevice("192.168.1.31")]]
        collector = self.make_collector(discover=True, discovery_scanner=discovery)
        self.session.get.return_value = json_response(PLUG_STATUS)

        first = collector.run_cycle()
        second = collector.run_cycle()

        self.assertEqual(first["devices"], 0)
        self.assertEqual(second["devices"], 1)
        self.assertEqual(second["records"], 1)
        self.assertEqual(discovery.discover.call_count, 2)

    def test_periodic_rediscovery(self):
        discovery = MagicMock()
        discovery.discover.return_value = [ConfirmedDevice("192.168.1.31")]
        collector = self.make_collector(discover=True, rediscover_cycles=2, discovery_scanner=discovery)
        collector.resolve_devices()
        self.session.get.return_value = json_response({})

        for _ in range(5):
            collector.run_cycle()

        # startup pass, then the cycles that start with 2 and 4 completed
        self.assertEqual(discovery.discover.call_count, 3)


class TestCli(unittest.TestCase):

    @patch('shelly_scrape.cli.setup_logging')
    @patch('shelly_scrape.cli.ShellyCollector')
    def test_scan_error_exits_nonzero(self, mock_collector_class, mock_logging):
        mock_collector_class.return_value.resolve_devices.side_effect = ScanError("nmap command failed")

        self.assertEqual(cli.main(["--discover"]), 1)
        mock_collector_class.return_value.close.assert_called_once()

    @patch('shelly_scrape.cli.setup_logging')
    @patch('shelly_scrape.cli.ShellyCollector')
    def test_no_devices_exits_cleanly(self, mock_collector_class, mock_logging):
        mock_collector_class.return_value.resolve_devices.return_value = []

        self.assertEqual(cli.main(["--discover"]), 0)
        mock_collector_class.return_value.run.assert_not_called()

    @patch('shelly_scrape.cli.signal.signal')
    @patch('shelly_scrape.cli.setup_logging')
    @patch('shelly_scrape.cli.ShellyCollector')
    def test_once(self, mock_collector_class, mock_logging, mock_signal):
        mock_collector_class.return_value.resolve_devices.return_value = [ConfirmedDevice("192.168.1.31")]

        self.assertEqual(cli.main(["--shelly-ip", "192.168.1.31", "--once"]), 0)
        mock_collector_class.return_value.run.assert_called_once_with(max_cycles=1)

    @patch('shelly_scrape.cli.setup_logging')
    @patch('shelly_scrape.cli.ShellyCollector')
    def test_list_devices_keeps_logs_off_stdout(self, mock_collector_class, mock_logging):
        mock_collector_class.return_value.resolve_devices.return_value = [
            ConfirmedDevice("192.168.1.31", "shellyplug-s.lan")]

        with patch('sys.stdout', new_callable=io.StringIO) as stdout:
            self.assertEqual(cli.main(["--discover", "--list-devices"]), 0)

        self.assertIs(mock_logging.call_args.kwargs["stream"], sys.stderr)
        self.assertEqual(json.loads(stdout.getvalue()),
                         [{"address": "192.168.1.31", "display_name": "shellyplug-s.lan"}])
        mock_collector_class.return_value.run.assert_not_called()

    @patch('shelly_scrape.cli.setup_logging')
    @patch('shelly_scrape.cli.ShellyCollector')
    def test_polling_logs_to_stdout(self, mock_collector_class, mock_logging):
        mock_collector_class.return_value.resolve_devices.return_value = []

        cli.main(["--discover"])

        self.assertIsNone(mock_logging.call_args.kwargs["stream"])

    def test_missing_target_is_usage_error(self):
        with patch.dict('os.environ', {}, clear=True):
            with self.assertRaises(SystemExit) as ctx:
                cli.main([])
        self.assertEqual(ctx.exception.code, 2)


if __name__ == "__main__":
    unittest.main(verbosity=2)
