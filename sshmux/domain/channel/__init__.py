"""
Channel domain module
"""
from .models import ChannelState, Stream, ExtendedData, CommandResult
from .channel import Channel
from .scp import scp_put, scp_get, scp_download, scp_upload

__all__ = [
    "ChannelState",
    "Stream",
    "ExtendedData",
    "CommandResult",
    "Channel",
    "scp_put",
    "scp_get",
    "scp_download",
    "scp_upload",
]
