from .models import WithdrawalRequest
from .orchestrator import WithdrawalOrchestrator

__all__ = ["WithdrawalRequest", "WithdrawalOrchestrator"]
