"""
Data access layer: managers for budget votes and voting sessions.
"""

from .budget_store import VoteStore
from .session_manager import SessionManager

__all__ = ["VoteStore", "SessionManager"]
