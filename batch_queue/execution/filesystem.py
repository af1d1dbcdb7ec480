"""
Filesystem capability set for batch queues.

Neither the amazon nor the k8s backend stages files through the queue
itself (their helper scripts do), so both use the local passthrough.
"""

import os
import shutil
from abc import ABC, abstractmethod


class FileSystemInterface(ABC):
    """Interface for the filesystem seen by a batch queue."""

    @abstractmethod
    def chdir(self, path: str) -> None:
        pass

    @abstractmethod
    def getcwd(self) -> str:
        pass

    @abstractmethod
    def mkdir(self, path: str, mode: int = 0o777, recursive: bool = False) -> None:
        """
        Create a directory.

        Args:
            path: Directory to create
            mode: Permission bits
            recursive: Create missing parents, and accept an existing directory
        """
        pass

    @abstractmethod
    def putfile(self, local_path: str, remote_path: str) -> int:
        """
        Copy a local file into the queue's filesystem.

        Returns:
            Number of bytes copied
        """
        pass

    @abstractmethod
    def stat(self, path: str) -> os.stat_result:
        pass

    @abstractmethod
    def unlink(self, path: str) -> None:
        pass

    @abstractmethod
    def rename(self, old_path: str, new_path: str) -> None:
        pass


class LocalFileSystem(FileSystemInterface):
    """Passthrough to the local filesystem."""

    def chdir(self, path: str) -> None:
        os.chdir(path)

    def getcwd(self) -> str:
        return os.getcwd()

    def mkdir(self, path: str, mode: int = 0o777, recursive: bool = False) -> None:
        if recursive:
            os.makedirs(path, mode=mode, exist_ok=True)
        else:
            os.mkdir(path, mode)

    def putfile(self, local_path: str, remote_path: str) -> int:
        shutil.copyfile(local_path, remote_path)
        return os.path.getsize(remote_path)

    def stat(self, path: str) -> os.stat_result:
        return os.stat(path)

    def unlink(self, path: str) -> None:
        os.unlink(path)

    def rename(self, old_path: str, new_path: str) -> None:
        os.rename(old_path, new_path)
