"""
Poller domain module
"""
from .models import PollerConfig, PolledFile
from .poller import SftpPoller

__all__ = ["PollerConfig", "PolledFile", "SftpPoller"]
