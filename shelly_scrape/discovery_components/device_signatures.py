"""
Device Signature Classifier - keyword based Shelly detection

This module decides whether a probe response belongs to a Shelly device using
case-insensitive keyword matching. Exclusion keywords identify look-alike
devices (IP cameras serving similar web endpoints) and always override a
positive keyword match.
"""

import logging
from enum import Enum
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, Optional, Union

import yaml

from ..core.exceptions import SignatureError

logger = logging.getLogger(__name__)

SIGNATURES_RESOURCE = 'signatures.yaml'


class ClassificationVerdict(Enum):
    """Outcome of classifying one probe response"""
    ACCEPT = "accept"
    REJECT = "reject"
    INCONCLUSIVE = "inconclusive"

    @property
    def is_decisive(self) -> bool:
        return self is not ClassificationVerdict.INCONCLUSIVE


def _read_packaged_signatures() -> str:
    """
    Read the bundled signatures file.
    Tries importlib.resources first (installed package), then the source tree.
    """
    try:
        from importlib import resources
        return resources.files('shelly_scrape').joinpath(SIGNATURES_RESOURCE).read_text(encoding='utf-8')
    except (ModuleNotFoundError, FileNotFoundError, AttributeError) as e:
        logger.debug(f"importlib.resources failed: {e}")

    signatures_file = Path(__file__).parent.parent / SIGNATURES_RESOURCE
    if not signatures_file.exists():
        raise SignatureError(f"Signatures file not found at {signatures_file}")

    logger.debug(f"Loading signatures from development path: {signatures_file}")
    return signatures_file.read_text(encoding='utf-8')


def load_signatures(path: Optional[Union[str, Path]] = None) -> Dict:
    """
    Load signature definitions from YAML.

    Args:
        path: Optional custom signatures file; the bundled file is used when omitted

    Returns:
        Parsed signature mapping with 'exclusions' and 'keyword_sets'
    """
    if path is None:
        content = _read_packaged_signatures()
        source = "bundled signatures"
    else:
        try:
            content = Path(path).read_text(encoding='utf-8')
        except OSError as e:
            raise SignatureError(f"Cannot read signatures file {path}: {e}") from e
        source = str(path)

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SignatureError(f"Invalid YAML in {source}: {e}") from e

    if not isinstance(data, dict):
        raise SignatureError(f"Signatures root in {source} must be a mapping")

    exclusions = data.get('exclusions', [])
    keyword_sets = data.get('keyword_sets')
    if not isinstance(exclusions, list):
        raise SignatureError(f"'exclusions' in {source} must be a list")
    if not isinstance(keyword_sets, dict) or not keyword_sets:
        raise SignatureError(f"'keyword_sets' in {source} must be a non-empty mapping")
    for set_name, keywords in keyword_sets.items():
        if not isinstance(keywords, list) or not keywords:
            raise SignatureError(f"Keyword set '{set_name}' in {source} must be a non-empty list")

    logger.debug(f"Loaded {len(exclusions)} exclusions and keyword sets {list(keyword_sets)} from {source}")
    return data


def _normalize(keywords: Iterable[str]) -> FrozenSet[str]:
    return frozenset(str(k).lower() for k in keywords if str(k).strip())


class SignatureClassifier:
    """Classifies probe bodies against exclusion and acceptance keywords"""

    def __init__(self, exclusions: Iterable[str], keyword_sets: Dict[str, Iterable[str]]):
        self.exclusions = _normalize(exclusions)
        self.keyword_sets = {name: _normalize(words) for name, words in keyword_sets.items()}

    @classmethod
    def from_yaml(cls, path: Optional[Union[str, Path]] = None) -> "SignatureClassifier":
        data = load_signatures(path)
        return cls(data.get('exclusions', []), data['keyword_sets'])

    @property
    def primary_keywords(self) -> FrozenSet[str]:
        return self.keyword_set('primary')

    @property
    def extended_keywords(self) -> FrozenSet[str]:
        return self.keyword_set('extended')

    def keyword_set(self, name: str) -> FrozenSet[str]:
        try:
            return self.keyword_sets[name]
        except KeyError:
            raise SignatureError(f"Unknown keyword set '{name}'") from None

    def classify(self, body_text: Optional[str], accept_keywords: Iterable[str]) -> ClassificationVerdict:
        """
        Classify a probe response body.

        Args:
            body_text: Decoded response body, None when it could not be read
            accept_keywords: Keywords that identify a Shelly device

        Returns:
            REJECT if an exclusion matches, ACCEPT if an accept keyword matches,
            INCONCLUSIVE otherwise
        """
        if body_text is None:
            return ClassificationVerdict.INCONCLUSIVE

        text_lower = body_text.lower()

        excluded = self.matched_exclusion(text_lower)
        if excluded:
            logger.debug(f"Exclusion keyword '{excluded}' matched")
            return ClassificationVerdict.REJECT

        for keyword in accept_keywords:
            if keyword.lower() in text_lower:
                logger.debug(f"Accept keyword '{keyword}' matched")
                return ClassificationVerdict.ACCEPT

        return ClassificationVerdict.INCONCLUSIVE

    def matched_exclusion(self, text_lower: str) -> Optional[str]:
        for keyword in sorted(self.exclusions):
            if keyword in text_lower:
                return keyword
        return None


_default_classifier: Optional[SignatureClassifier] = None


def get_default_classifier() -> SignatureClassifier:
    """Shared classifier built from the bundled signatures"""
    global _default_classifier
    if _default_classifier is None:
        _default_classifier = SignatureClassifier.from_yaml()
    return _default_classifier


def classify(body_text: Optional[str], accept_keywords: Iterable[str]) -> ClassificationVerdict:
    """Convenience function using the bundled signatures"""
    return get_default_classifier().classify(body_text, accept_keywords)
