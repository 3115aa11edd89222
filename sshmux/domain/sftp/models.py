"""
SFTP domain models
"""
import posixpath
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Dict, Any, List

from ...core.utils import file_type_name, mode_to_perm


class FileType(str, Enum):
    """Remote file types"""
    REGULAR = "REGULAR"
    DIRECTORY = "DIRECTORY"
    SYMBOLIC_LINK = "SYMBOLIC_LINK"
    BLOCK_DEVICE = "BLOCK_DEVICE"
    CHARACTER_DEVICE = "CHARACTER_DEVICE"
    FIFO = "FIFO"
    SOCKET = "SOCKET"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_mode(cls, mode: int) -> "FileType":
        _, name = file_type_name(mode)
        return cls(name)


@dataclass
class FileStat:
    """Remote file metadata"""
    path: str
    name: str
    size: int
    mode: int
    uid: Optional[int] = None
    gid: Optional[int] = None
    atime: Optional[int] = None
    mtime: Optional[int] = None
    type: FileType = FileType.UNKNOWN
    perm: str = ""

    def __post_init__(self):
        """Derive type and permission string from mode"""
        self.type = FileType.from_mode(self.mode)
        self.perm = mode_to_perm(self.mode)

    @property
    def is_file(self) -> bool:
        return self.type is FileType.REGULAR

    @property
    def is_dir(self) -> bool:
        return self.type is FileType.DIRECTORY

    @classmethod
    def from_attributes(cls, path: str, attrs: Any, name: Optional[str] = None) -> "FileStat":
        """
        Build from a paramiko SFTPAttributes.

        Args:
            path: Absolute remote path the attributes belong to
            attrs: paramiko.SFTPAttributes
            name: Entry name (defaults to the last path component)
        """
        return cls(
            path=path,
            name=name if name is not None else posixpath.basename(path.rstrip("/")) or path,
            size=attrs.st_size or 0,
            mode=attrs.st_mode or 0,
            uid=attrs.st_uid,
            gid=attrs.st_gid,
            atime=attrs.st_atime,
            mtime=attrs.st_mtime,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "path": self.path,
            "name": self.name,
            "size": self.size,
            "mode": self.mode,
            "uid": self.uid,
            "gid": self.gid,
            "atime": self.atime,
            "mtime": self.mtime,
            "type": self.type.value,
            "perm": self.perm,
        }


@dataclass
class DirectoryListing:
    """Directory entry names grouped by type, each list in server order"""
    path: str
    directories: List[str] = field(default_factory=list)
    files: List[str] = field(default_factory=list)
    links: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        return {
            "path": self.path,
            "directories": list(self.directories),
            "files": list(self.files),
            "links": list(self.links),
        }
