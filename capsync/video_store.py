"""Lookup of uploaded source videos by filename."""

import logging
import os

from .exceptions import FileSystemError

logger = logging.getLogger(__name__)


class LocalVideoStore:
    """Resolves uploaded video filenames inside a single upload directory."""

    def __init__(self, upload_dir: str = "uploads"):
        self.upload_dir = os.path.abspath(upload_dir)

    def path_for(self, filename: str) -> str:
        """
        Returns the absolute path of `filename` inside the upload directory.

        Raises:
            FileSystemError: If the name is empty or escapes the upload directory.
        """
        if not filename or not filename.strip():
            raise FileSystemError("Video filename cannot be empty")
        path = os.path.abspath(os.path.join(self.upload_dir, filename))
        if os.path.commonpath([self.upload_dir, path]) != self.upload_dir or path == self.upload_dir:
            logger.warning(f"Rejected video filename outside the upload directory: {filename!r}")
            raise FileSystemError(f"Invalid video filename: {filename}")
        return path

    def exists(self, filename: str) -> bool:
        try:
            return os.path.isfile(self.path_for(filename))
        except FileSystemError:
            return False
