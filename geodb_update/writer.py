"""
Local Database Writer

Turns a downloaded edition stream into an installed database file.
The stream is hashed while it is written to a temporary file next to the
destination; only a file whose MD5 matches the announced hash replaces the
current database, through an atomic rename.
"""

import os
import errno
import hashlib
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict

from . import DATABASE_FILE_SUFFIX, ZERO_MD5
from .errors import DatabaseIOError, IntegrityError, TransientError
from .models import ReadResult

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
TEMP_FILE_SUFFIX = ".temporary"


class Writer(ABC):
    """Interface for writing an edition to its target location."""

    @abstractmethod
    def write(self, result: ReadResult):
        """Verify and install the edition carried by `result`."""

    @abstractmethod
    def get_hash(self, edition_id: str) -> str:
        """Return the MD5 of the stored edition, or ZERO_MD5 if absent."""


class LocalFileWriter(Writer):
    """Writes editions to one file per edition under a database directory."""

    def __init__(self, database_directory: str, preserve_file_times: bool = False,
                 verbose: bool = False):
        """
        Initialize the writer.

        Args:
            database_directory: Directory holding the database files
            preserve_file_times: Set file modification times to the server's
            verbose: Log each installed file at INFO level
        """
        self.database_directory = database_directory
        self.preserve_file_times = preserve_file_times
        self.verbose = verbose

        try:
            os.makedirs(database_directory, exist_ok=True)
        except OSError as e:
            raise DatabaseIOError(f"error creating database directory {database_directory}: {e}") from e

    def get_file_path(self, edition_id: str) -> str:
        return os.path.join(self.database_directory, edition_id + DATABASE_FILE_SUFFIX)

    def get_temp_file_path(self, edition_id: str) -> str:
        return self.get_file_path(edition_id) + TEMP_FILE_SUFFIX

    def write(self, result: ReadResult):
        """
        Write a downloaded edition to disk.

        Args:
            result: Downloaded edition; its stream is closed on every exit path

        Raises:
            IntegrityError: If the content does not match result.new_hash
            DatabaseIOError: If the file cannot be written or installed
        """
        file_path = self.get_file_path(result.edition_id)
        temp_path = self.get_temp_file_path(result.edition_id)

        try:
            try:
                actual_hash, size = self._write_temp_file(result, temp_path)
            finally:
                result.close()

            if actual_hash.lower() != result.new_hash.lower():
                raise IntegrityError(
                    f"md5 of new database ({actual_hash}) does not match expected md5 ({result.new_hash})",
                    edition_id=result.edition_id,
                    expected_hash=result.new_hash,
                    actual_hash=actual_hash
                )

            self._install(temp_path, file_path, result)

        except BaseException:
            self._discard(temp_path)
            raise

        message = f"Database {result.edition_id} successfully updated: {result.new_hash.lower()} ({size:,} bytes)"
        if self.verbose:
            logger.info(message)
        else:
            logger.debug(message)

    def _write_temp_file(self, result: ReadResult, temp_path: str):
        """Stream the payload into `temp_path`, returning (md5, size)."""
        md5 = hashlib.md5()
        size = 0

        try:
            with open(temp_path, 'wb') as f:
                for chunk in iter(lambda: self._read_chunk(result), b""):
                    f.write(chunk)
                    md5.update(chunk)
                    size += len(chunk)

                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            raise DatabaseIOError(f"error writing {temp_path}: {e}", edition_id=result.edition_id) from e

        return md5.hexdigest(), size

    @staticmethod
    def _read_chunk(result: ReadResult) -> bytes:
        # Failures reading the payload are transfer problems, not local ones
        try:
            return result.reader.read(CHUNK_SIZE)
        except Exception as e:
            raise TransientError(f"error reading database stream: {e}", edition_id=result.edition_id) from e

    def _install(self, temp_path: str, file_path: str, result: ReadResult):
        """Atomically move the verified temporary file over the destination."""
        try:
            os.replace(temp_path, file_path)
            self._sync_directory()

            if self.preserve_file_times:
                timestamp = result.modified_at.timestamp()
                os.utime(file_path, (timestamp, timestamp))
        except OSError as e:
            raise DatabaseIOError(f"error installing {file_path}: {e}", edition_id=result.edition_id) from e

    def _sync_directory(self):
        if not hasattr(os, 'O_DIRECTORY'):
            return

        fd = os.open(self.database_directory, os.O_RDONLY | os.O_DIRECTORY)
        try:
            os.fsync(fd)
        except OSError as e:
            # Some filesystems do not support syncing a directory
            if e.errno not in (errno.EINVAL, errno.ENOTSUP):
                raise
        finally:
            os.close(fd)

    @staticmethod
    def _discard(temp_path: str):
        try:
            os.remove(temp_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove temporary file {temp_path}: {e}")

    def get_hash(self, edition_id: str) -> str:
        """
        Calculate the MD5 hash of the stored edition.

        Args:
            edition_id: Edition to look up

        Returns:
            str: MD5 hash in hex format, ZERO_MD5 if the edition is not stored

        Raises:
            DatabaseIOError: On any error other than a missing file
        """
        file_path = self.get_file_path(edition_id)
        md5 = hashlib.md5()

        try:
            with open(file_path, 'rb') as f:
                for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
                    md5.update(chunk)
        except FileNotFoundError:
            logger.debug(f"No existing database for {edition_id}, using zero hash")
            return ZERO_MD5
        except OSError as e:
            raise DatabaseIOError(f"error reading {file_path}: {e}", edition_id=edition_id) from e

        file_hash = md5.hexdigest()
        logger.debug(f"Calculated MD5 of {file_path}: {file_hash}")
        return file_hash

    def get_file_info(self, edition_id: str) -> Dict[str, Any]:
        """
        Get information about the stored edition.

        Returns:
            Dict with file information
        """
        file_path = self.get_file_path(edition_id)
        info: Dict[str, Any] = {
            'edition_id': edition_id,
            'file_path': file_path,
            'exists': os.path.exists(file_path),
            'file_hash': None,
            'file_size': None,
            'modified_time': None
        }

        if info['exists']:
            stat = os.stat(file_path)
            info['file_hash'] = self.get_hash(edition_id)
            info['file_size'] = stat.st_size
            info['modified_time'] = datetime.fromtimestamp(stat.st_mtime)

        return info
