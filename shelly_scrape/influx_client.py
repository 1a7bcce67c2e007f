"""
InfluxDB client - forwards meter readings using the 1.x HTTP write API

Readings are written as line protocol to <influx_url>/write?db=<database>
with second precision.
"""

import logging
from typing import Iterable, List, Optional

import requests

from .core.exceptions import ForwardingError
from .core.models import MeterReading

logger = logging.getLogger(__name__)

MEASUREMENT = "shelly_power"


def _escape_tag(value: str) -> str:
    return (str(value)
            .replace('\\', '\\\\')
            .replace(',', '\\,')
            .replace('=', '\\=')
            .replace(' ', '\\ '))


def _format_field(value) -> str:
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return repr(float(value))


def to_line_protocol(reading: MeterReading, measurement: str = MEASUREMENT) -> str:
    """Format one reading as an InfluxDB line protocol record"""
    tags = [f"host={_escape_tag(reading.address)}"]
    if reading.display_name:
        tags.append(f"name={_escape_tag(reading.display_name)}")
    tags.append(f"kind={_escape_tag(reading.kind)}")
    tags.append(f"channel={reading.channel}")

    field_values = [("power", reading.power)]
    for name in ("total", "voltage", "current"):
        value = getattr(reading, name)
        if value is not None:
            field_values.append((name, value))
    field_values.append(("valid", reading.is_valid))
    fields_str = ",".join(f"{name}={_format_field(value)}" for name, value in field_values)

    return f"{measurement},{','.join(tags)} {fields_str} {reading.timestamp}"


class InfluxClient:
    """Writes readings to one InfluxDB database"""

    def __init__(self, url: str, database: str, username: Optional[str] = None,
                 password: Optional[str] = None, timeout: float = 10.0,
                 session: Optional[requests.Session] = None):
        self.url = url.rstrip('/')
        self.database = database
        self.username = username
        self.password = password
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def write_url(self) -> str:
        return f"{self.url}/write"

    def _params(self):
        params = {"db": self.database, "precision": "s"}
        if self.username:
            params["u"] = self.username
            params["p"] = self.password or ""
        return params

    def write(self, readings: Iterable[MeterReading]) -> int:
        """
        Write readings in one batch.

        Returns:
            Number of records written

        Raises:
            ForwardingError: transport failure or non-2xx response
        """
        lines: List[str] = [to_line_protocol(r) for r in readings]
        if not lines:
            return 0

        payload = "\n".join(lines) + "\n"
        logger.debug(f"Writing {len(lines)} record(s) to {self.write_url} db={self.database}")

        try:
            response = self.session.post(self.write_url, params=self._params(),
                                         data=payload.encode('utf-8'), timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise ForwardingError(f"InfluxDB write to {self.url} failed: {e}") from e

        if not 200 <= response.status_code < 300:
            raise ForwardingError(
                f"InfluxDB write returned {response.status_code}: {response.text.strip()[:200]}",
                status_code=response.status_code,
            )

        return len(lines)

    def close(self) -> None:
        self.session.close()
