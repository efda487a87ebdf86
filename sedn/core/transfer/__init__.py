"""
Transfer Planning Module

Plans sends to known or unknown recipients across the sender's chains.
"""

from .models import ChainBalance, MappingRecipientResolver, RecipientResolver, TransferIntent
from .orchestrator import TransferOrchestrator, reconcile

__all__ = [
    "ChainBalance",
    "MappingRecipientResolver",
    "RecipientResolver",
    "TransferIntent",
    "TransferOrchestrator",
    "reconcile",
]
