"""
Cardsync - Host-authoritative multiplayer card game engine.

A deterministic rules engine for a colour-matching shedding card game plus
the synchronization layer that keeps every participant's copy of the game
consistent through one replicated record:
- Rules engine (deck, turns, special cards, last-card declarations, scoring)
- Process-local session store with change notifications
- Host/peer coordinators with version-guarded intent application
- Automated players that use the same intent path as humans
"""

__version__ = "0.1.0"
