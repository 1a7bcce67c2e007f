"""
Probe Scanner - single HTTP probes against candidate hosts

Every probe is one GET with a hard deadline. Transport failures are reported
in the ProbeResult instead of being raised, so callers can fall through to the
next probe without exception handling.
"""

import codecs
import logging
import socket
import threading
import time
from dataclasses import dataclass
from typing import Optional, Tuple

import requests
import urllib3

logger = logging.getLogger(__name__)

USER_AGENT = 'shelly-scrape/1.0'
MAX_BODY_BYTES = 1024 * 1024
CHUNK_SIZE = 8192


@dataclass
class ProbeResult:
    """Individual probe result"""
    url: str
    succeeded: bool
    status_ok: bool = False
    status_code: int = 0
    body: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def failure(cls, url: str, error: str) -> "ProbeResult":
        return cls(url=url, succeeded=False, error=error)


class ProbeDeadlineExceeded(Exception):
    """Raised internally when body streaming runs past the probe deadline"""


def _abort_response(response: requests.Response, expired: threading.Event) -> None:
    """Watchdog callback: unblock a body read that is still running at the deadline"""
    expired.set()
    connection = getattr(response.raw, 'connection', None)
    sock = getattr(connection, 'sock', None)
    if sock is None:
        response.close()
        return
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError as e:
        logger.debug(f"Socket already closed when probe deadline fired: {e}")


class NetworkProber:
    """Issues single HTTP GET probes over a shared session"""

    def __init__(self, session: Optional[requests.Session] = None, max_body_bytes: int = MAX_BODY_BYTES):
        if session is None:
            session = requests.Session()
            session.headers['User-Agent'] = USER_AGENT
        self.session = session
        self.max_body_bytes = max_body_bytes

    def probe(self, url: str, timeout: float) -> ProbeResult:
        """
        Probe a URL with a GET request.

        Args:
            url: Full URL to request
            timeout: Total time allowed for the request and body, in seconds

        Returns:
            ProbeResult; succeeded is False on any transport error or timeout
        """
        deadline = time.monotonic() + timeout
        logger.debug(f"Probing {url} (timeout {timeout}s)")

        try:
            # total caps connect plus the wait for the response headers
            response = self.session.get(url, timeout=urllib3.Timeout(total=timeout), stream=True)
        except requests.exceptions.RequestException as e:
            logger.debug(f"Probe to {url} failed: {e}")
            return ProbeResult.failure(url, str(e))

        expired = threading.Event()
        watchdog = None
        try:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.debug(f"Probe to {url} exceeded {timeout}s before the body was read")
                return ProbeResult.failure(url, f"timed out after {timeout}s")

            watchdog = threading.Timer(remaining, _abort_response, args=(response, expired))
            watchdog.daemon = True
            watchdog.start()

            status_ok = 200 <= response.status_code < 300
            try:
                raw, truncated = self._read_body(response, deadline)
            except ProbeDeadlineExceeded:
                logger.debug(f"Probe to {url} exceeded {timeout}s while reading body")
                return ProbeResult.failure(url, f"timed out after {timeout}s")
            except requests.exceptions.RequestException as e:
                if expired.is_set():
                    logger.debug(f"Probe to {url} exceeded {timeout}s while reading body")
                    return ProbeResult.failure(url, f"timed out after {timeout}s")
                logger.debug(f"Probe to {url} returned {response.status_code} but body was unreadable: {e}")
                return ProbeResult(url=url, succeeded=True, status_ok=status_ok,
                                   status_code=response.status_code, error=str(e))

            if expired.is_set():
                logger.debug(f"Probe to {url} exceeded {timeout}s while reading body")
                return ProbeResult.failure(url, f"timed out after {timeout}s")

            body = self._decode(raw, response.encoding, truncated)
            logger.debug(f"Probe to {url} returned status {response.status_code}")
            return ProbeResult(
                url=url,
                succeeded=True,
                status_ok=status_ok,
                status_code=response.status_code,
                body=body,
                error=None if body is not None else "undecodable body"
            )
        finally:
            if watchdog is not None:
                watchdog.cancel()
            response.close()

    def _read_body(self, response: requests.Response, deadline: float) -> Tuple[bytes, bool]:
        """Returns (body bytes, whether the body was cut at max_body_bytes)"""
        chunks = []
        size = 0
        for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
            if time.monotonic() > deadline:
                raise ProbeDeadlineExceeded()
            chunks.append(chunk)
            size += len(chunk)
            if size >= self.max_body_bytes:
                return b''.join(chunks)[:self.max_body_bytes], True
        return b''.join(chunks), False

    @staticmethod
    def _decode(raw: bytes, encoding: Optional[str], truncated: bool = False) -> Optional[str]:
        try:
            decoder = codecs.getincrementaldecoder(encoding or 'utf-8')()
        except LookupError:
            decoder = codecs.getincrementaldecoder('utf-8')()
        try:
            # a cut body may end inside a multi-byte character; drop that tail
            return decoder.decode(raw, final=not truncated)
        except UnicodeDecodeError:
            return None

    def close(self) -> None:
        self.session.close()
