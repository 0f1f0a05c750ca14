"""Engine services."""

from smartconnect.services.candidate_service import CandidateRepository

__all__ = ["CandidateRepository"]
