"""
Matcher modules
"""

from .orb_matcher import ORBMatcher
from .matcher_base import MatcherBase
from .matcher_utils import MatchingResult

__all__ = [
    'ORBMatcher',
    'MatcherBase',
    'MatchingResult'
]
