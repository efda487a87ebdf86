"""
Claim Module

Commit-reveal claims for transfers to recipients without a known address.
"""

from .models import ClaimRecord, ClaimState
from .protocol import ClaimProtocol
from .secrets import generate_secret, secret_from_solution, solution_matches

__all__ = [
    "ClaimProtocol",
    "ClaimRecord",
    "ClaimState",
    "generate_secret",
    "secret_from_solution",
    "solution_matches",
]
