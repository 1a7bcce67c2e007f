"""
Device Identifier - staged probe cascade for a single host

Stage 1: /shelly identification endpoint (brand keyword)
Stage 2: /status fallback (status field names)
Stage 3: confirmation sweep over /settings, /ota, /meter/0

The cascade stops at the first decisive verdict. A host that never produces
positive evidence is rejected.
"""

import logging
from typing import Optional

from .device_signatures import ClassificationVerdict, SignatureClassifier, get_default_classifier
from .probe_scanner import NetworkProber

logger = logging.getLogger(__name__)

IDENTIFY_PATH = "/shelly"
STATUS_PATH = "/status"
CONFIRMATION_PATHS = ["/settings", "/ota", "/meter/0"]

PRIMARY_TIMEOUT = 3.0
CONFIRMATION_TIMEOUT = 2.0


def build_url(address: str, path: str) -> str:
    """Build a plain HTTP URL, bracketing IPv6 literals"""
    host = address
    if ':' in address and not address.startswith('['):
        host = f"[{address}]"
    return f"http://{host}{path}"


class DeviceIdentifier:
    """Decides whether a host is a Shelly device"""

    def __init__(self, prober: Optional[NetworkProber] = None,
                 classifier: Optional[SignatureClassifier] = None,
                 primary_timeout: float = PRIMARY_TIMEOUT,
                 confirmation_timeout: float = CONFIRMATION_TIMEOUT):
        self.prober = prober or NetworkProber()
        self.classifier = classifier or get_default_classifier()
        self.primary_timeout = primary_timeout
        self.confirmation_timeout = confirmation_timeout

    def identify(self, address: str) -> ClassificationVerdict:
        """
        Run the probe cascade against a host.

        Args:
            address: IPv4/IPv6 literal or hostname

        Returns:
            ACCEPT or REJECT; INCONCLUSIVE never leaves this method
        """
        verdict = self._probe_identify_endpoint(address)
        if verdict.is_decisive:
            return self._finish(address, verdict, IDENTIFY_PATH)

        verdict, needs_confirmation = self._probe_status_endpoint(address)
        if not needs_confirmation:
            return self._finish(address, verdict, STATUS_PATH)

        verdict = self._confirmation_sweep(address)
        return self._finish(address, verdict, "confirmation sweep")

    def is_shelly(self, address: str) -> bool:
        return self.identify(address) is ClassificationVerdict.ACCEPT

    def _probe_identify_endpoint(self, address: str) -> ClassificationVerdict:
        result = self.prober.probe(build_url(address, IDENTIFY_PATH), self.primary_timeout)
        if not result.succeeded:
            logger.debug(f"{address}: {IDENTIFY_PATH} unreachable, trying {STATUS_PATH}")
            return ClassificationVerdict.INCONCLUSIVE

        return self.classifier.classify(result.body, self.classifier.primary_keywords)

    def _probe_status_endpoint(self, address: str):
        """Returns (verdict, needs_confirmation)"""
        result = self.prober.probe(build_url(address, STATUS_PATH), self.primary_timeout)
        if not result.succeeded:
            logger.debug(f"{address}: {STATUS_PATH} unreachable")
            return ClassificationVerdict.REJECT, False

        verdict = self.classifier.classify(result.body, self.classifier.extended_keywords)
        if verdict.is_decisive:
            return verdict, False

        if result.body is None and result.status_ok:
            logger.debug(f"{address}: {STATUS_PATH} body unreadable, running confirmation sweep")
            return ClassificationVerdict.INCONCLUSIVE, True

        return ClassificationVerdict.REJECT, False

    def _confirmation_sweep(self, address: str) -> ClassificationVerdict:
        for path in CONFIRMATION_PATHS:
            result = self.prober.probe(build_url(address, path), self.confirmation_timeout)
            if not (result.succeeded and result.status_ok):
                continue

            verdict = self.classifier.classify(result.body, self.classifier.extended_keywords)
            if verdict.is_decisive:
                logger.debug(f"{address}: {path} gave {verdict.value}")
                return verdict

        return ClassificationVerdict.REJECT

    @staticmethod
    def _finish(address: str, verdict: ClassificationVerdict, stage: str) -> ClassificationVerdict:
        if verdict is ClassificationVerdict.ACCEPT:
            logger.info(f"{address}: identified as Shelly device ({stage})")
        else:
            logger.debug(f"{address}: rejected ({stage})")
        return verdict
