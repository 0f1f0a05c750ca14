"""Candidate feed: HTTP fetch and schema-tolerant parsing."""

from smartconnect.feed.client import FeedClient
from smartconnect.feed.parser import CandidateParser, ParseReport, is_valid_hostname, is_valid_ipv4

__all__ = [
    "CandidateParser",
    "FeedClient",
    "ParseReport",
    "is_valid_hostname",
    "is_valid_ipv4",
]
