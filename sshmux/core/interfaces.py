"""
Core interfaces for dependency injection
"""
from abc import ABC, abstractmethod
from typing import Any, List


class ConnectionFactory(ABC):
    """SSH connection factory interface"""

    @abstractmethod
    def create(self, name: str) -> Any:
        """Create and connect a session for a named connection"""
        pass

    @abstractmethod
    def get(self, name: str) -> Any:
        """Return a live session for a named connection, reconnecting if needed"""
        pass

    @abstractmethod
    def names(self) -> List[str]:
        """List all known connection names"""
        pass
