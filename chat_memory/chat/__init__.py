"""Turn pipeline orchestration."""
from .orchestrator import TurnOrchestrator, TurnResult

__all__ = ['TurnOrchestrator', 'TurnResult']
