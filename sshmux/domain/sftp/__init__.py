"""
SFTP domain module
"""
from .models import FileType, FileStat, DirectoryListing
from .session import SftpSession

__all__ = ["FileType", "FileStat", "DirectoryListing", "SftpSession"]
