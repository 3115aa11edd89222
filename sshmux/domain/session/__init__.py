"""
Session domain module
"""
from .models import AuthState, SessionConfig, SessionInfo, SessionStats
from .transport import TransportSession

__all__ = ["AuthState", "SessionConfig", "SessionInfo", "SessionStats", "TransportSession"]
