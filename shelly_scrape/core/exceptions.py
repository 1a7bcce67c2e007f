"""
Exception hierarchy for shelly-scrape.

Probe transport failures are not exceptions: they are folded into
ProbeResult(succeeded=False) and never leave the discovery pipeline.
"""

from typing import Optional


class ShellyScrapeError(Exception):
    """Base class for all scraper errors"""


class ScanError(ShellyScrapeError):
    """The external host-discovery scan could not run or exited non-zero"""

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class SignatureError(ShellyScrapeError):
    """Device signature definitions are missing or malformed"""


class MeteringError(ShellyScrapeError):
    """A device returned a status payload that could not be read"""


class ForwardingError(ShellyScrapeError):
    """Readings could not be written to the time-series store"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ConfigError(ShellyScrapeError):
    """Invalid scraper configuration"""
