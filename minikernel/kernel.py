"""Boots the file system side of the kernel on a block device."""

from __future__ import annotations

from pathlib import Path
from typing import Union

from .bio import BufferCache
from .console import Console
from .disk import BlockDevice
from .file import CONSOLE, FileTable
from .fs import FileSystem
from .layout import ROOTDEV
from .sysfile import Process


class Kernel:
    """Console, buffer cache, file system and file table over one disk."""

    def __init__(self, device: BlockDevice) -> None:
        self.device = device
        self.console = Console()
        self.console.write(b"\nkernel is booting\n\n")
        self.cache = BufferCache(device)
        self.fs = FileSystem(self.cache, ROOTDEV)
        self.files = FileTable(self.fs)
        self.files.register_device(CONSOLE, self.console.read, self.console.write)

    @classmethod
    def from_image(cls, path: Union[str, Path]) -> "Kernel":
        """Boot from a disk image file."""
        return cls(BlockDevice.from_file(path))

    def process(self) -> Process:
        """A new process whose current directory is the root."""
        return Process(self.fs, self.files)