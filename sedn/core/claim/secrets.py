"""Secret / solution commit-reveal helpers."""

import secrets as _random

from eth_utils import keccak

from ..execution.models import SecretPair

SOLUTION_BYTES = 24


def secret_from_solution(solution: str) -> str:
    """``keccak256(utf8(solution))`` as a 0x-prefixed hex string."""
    return "0x" + keccak(text=solution).hex()


def generate_secret() -> SecretPair:
    """Fresh random solution and its committed secret."""
    solution = _random.token_urlsafe(SOLUTION_BYTES)
    return SecretPair(solution=solution, secret=secret_from_solution(solution))


def solution_matches(solution: str, secret: str) -> bool:
    return secret_from_solution(solution).lower() == secret.lower()
