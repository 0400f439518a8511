"""
Bots module - Automated players.

Provides:
- BotPolicy: Interface for move selection
- RandomPolicy / FirstLegalPolicy: baselines
- AutomatedPlayerDriver: submits intents for the seats it controls
"""

from .policy import BotPolicy, BotDecision, RandomPolicy, FirstLegalPolicy
from .driver import AutomatedPlayerDriver

__all__ = [
    "BotPolicy",
    "BotDecision",
    "RandomPolicy",
    "FirstLegalPolicy",
    "AutomatedPlayerDriver",
]
