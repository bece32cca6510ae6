"""Candidate-endpoint calls to the remote Space backend."""
from .endpoints import CandidateResult, candidate_urls, try_candidates

__all__ = ["CandidateResult", "candidate_urls", "try_candidates"]
