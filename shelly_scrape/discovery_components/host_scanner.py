"""
Host Scanner - runs the external host-discovery tool

The scanner only runs the process and hands back its raw output; parsing
lives in the discovery module so it can be exercised with canned output.
"""

import logging
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from ..core.exceptions import ScanError

logger = logging.getLogger(__name__)

DEFAULT_SCAN_TIMEOUT = 300


@dataclass
class ScanOutput:
    """Raw result of one scan invocation"""
    returncode: int
    stdout: str
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class HostScanner(ABC):
    """Base class for host-discovery backends"""

    @abstractmethod
    def scan(self, network_range: str) -> ScanOutput:
        """
        Run a ping sweep over a network range.

        Raises ScanError only when the tool cannot be run at all; a non-zero
        exit is reported through ScanOutput.returncode.
        """


class NmapHostScanner(HostScanner):
    """Ping sweep using the nmap binary"""

    def __init__(self, nmap_path: str = "nmap", timeout: Optional[float] = DEFAULT_SCAN_TIMEOUT,
                 extra_args: Optional[List[str]] = None):
        self.nmap_path = nmap_path
        self.timeout = timeout
        self.extra_args = list(extra_args or [])

    def build_command(self, network_range: str) -> List[str]:
        return [
            self.nmap_path,
            "-sn",  # ping scan only
            *self.extra_args,
            network_range,
        ]

    def scan(self, network_range: str) -> ScanOutput:
        cmd = self.build_command(network_range)
        logger.debug(f"nmap command: {' '.join(cmd)}")

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, errors='replace',
                                    timeout=self.timeout)
        except FileNotFoundError as e:
            raise ScanError(f"nmap executable not found: {self.nmap_path}") from e
        except subprocess.TimeoutExpired as e:
            raise ScanError(f"nmap scan of {network_range} timed out after {self.timeout}s") from e
        except OSError as e:
            raise ScanError(f"nmap could not be started: {e}") from e

        return ScanOutput(returncode=result.returncode, stdout=result.stdout or "", stderr=result.stderr or "")
