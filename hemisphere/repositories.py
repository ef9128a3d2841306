"""
Data Repository Classes for the Hemisphere Check-In Application

This module implements the Repository pattern for the JSON collections
(attendees, events, exhibitor tokens, leads, scan logs). Every
collection is a JSON array that is read and rewritten as a whole.

Read-modify-write cycles go through ``update()``, which holds a
``filelock`` lock on ``<file>.lock`` so that two writers, in this process
or another worker, cannot overwrite each other's changes.
"""

import copy
import json
import logging
import os
import stat
import tempfile
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, TypeVar

from filelock import FileLock, Timeout

from .exceptions import StorageError

logger = logging.getLogger(__name__)

T = TypeVar('T')

DEFAULT_LOCK_TIMEOUT = 10.0
NEW_FILE_MODE = 0o644


class DataRepository(ABC):
    """
    Abstract base class for collection repositories

    This class defines the interface that all repositories must
    implement, following the Repository pattern.
    """

    @abstractmethod
    def load_data(self) -> List[Dict]:
        """
        Load the collection from the storage medium

        Returns:
            List of stored records

        Raises:
            StorageError: If the stored data cannot be read
        """
        pass

    @abstractmethod
    def save_data(self, data: List[Dict]) -> None:
        """
        Replace the stored collection

        Args:
            data: List of records to save

        Raises:
            StorageError: If the data cannot be written
        """
        pass

    @abstractmethod
    def update(self, mutate: Callable[[List[Dict]], T]) -> T:
        """
        Run a read-modify-write cycle as a single writer

        ``mutate`` receives the current records, may change the list in
        place, and its return value is passed back to the caller. The
        list is saved after ``mutate`` returns; if it raises, nothing is
        written.

        Args:
            mutate: Callable applied to the loaded records

        Returns:
            Whatever ``mutate`` returned
        """
        pass


class JSONRepository(DataRepository):
    """
    JSON file-based repository implementation

    A missing file reads as an empty collection. A file holding
    malformed JSON, JSON that is not an array, or an array with anything
    but objects in it raises StorageError for reads and writes alike.
    """

    def __init__(self, file_path: str, lock_timeout: float = DEFAULT_LOCK_TIMEOUT):
        """
        Initialize JSON repository

        Args:
            file_path: Path to the JSON file
            lock_timeout: Seconds to wait for another writer before failing
        """
        self.file_path = file_path
        self.lock_path = file_path + ".lock"
        self._lock = FileLock(self.lock_path, timeout=lock_timeout)

    def load_data(self) -> List[Dict]:
        """
        Load records from the JSON file

        Returns:
            List of records, empty if the file does not exist yet

        Raises:
            StorageError: If file reading or JSON parsing fails
        """
        try:
            with open(self.file_path, 'r', encoding='utf-8') as f:
                raw = f.read()
        except FileNotFoundError:
            return []
        except PermissionError as e:
            raise StorageError(
                "read",
                f"Permission denied accessing {self.file_path}: {str(e)}"
            )
        except OSError as e:
            raise StorageError(
                "read",
                f"Unexpected error reading {self.file_path}: {str(e)}"
            )

        if not raw.strip():
            return []

        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise StorageError(
                "read",
                f"Invalid JSON in {self.file_path}: {str(e)}"
            )

        if not isinstance(data, list):
            raise StorageError(
                "read",
                f"Expected a JSON array in {self.file_path}, got {type(data).__name__}"
            )
        for index, record in enumerate(data):
            if not isinstance(record, dict):
                raise StorageError(
                    "read",
                    f"Expected an object at index {index} in {self.file_path}, "
                    f"got {type(record).__name__}"
                )
        return data

    def save_data(self, data: List[Dict]) -> None:
        """
        Save records to the JSON file

        The file is written to a temporary sibling and renamed into
        place, so readers never see a half-written document. The
        replacement keeps the permission bits of the file it replaces.

        Args:
            data: List of records to save

        Raises:
            StorageError: If file writing fails
        """
        directory = os.path.dirname(self.file_path) or "."
        tmp_path = None
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                prefix=os.path.basename(self.file_path) + ".",
                suffix=".tmp",
                dir=directory
            )
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.chmod(tmp_path, self._file_mode())
            os.replace(tmp_path, self.file_path)
            tmp_path = None

        except PermissionError as e:
            raise StorageError(
                "write",
                f"Permission denied writing to {self.file_path}: {str(e)}"
            )
        except (TypeError, ValueError) as e:
            raise StorageError(
                "write",
                f"JSON encoding error: {str(e)}"
            )
        except OSError as e:
            raise StorageError(
                "write",
                f"Unexpected error writing to {self.file_path}: {str(e)}"
            )
        finally:
            if tmp_path and os.path.exists(tmp_path):
                os.remove(tmp_path)

    def _file_mode(self) -> int:
        try:
            return stat.S_IMODE(os.stat(self.file_path).st_mode)
        except FileNotFoundError:
            return NEW_FILE_MODE

    def update(self, mutate: Callable[[List[Dict]], T]) -> T:
        directory = os.path.dirname(self.file_path) or "."
        try:
            os.makedirs(directory, exist_ok=True)
            with self._lock:
                records = self.load_data()
                result = mutate(records)
                self.save_data(records)
        except Timeout:
            raise StorageError(
                "write",
                f"Timed out waiting for {self.lock_path}"
            )
        except OSError as e:
            raise StorageError(
                "write",
                f"Could not lock {self.lock_path}: {str(e)}"
            )
        logger.debug("Rewrote %s (%d records)", self.file_path, len(records))
        return result


class InMemoryRepository(DataRepository):
    """
    In-memory repository implementation for testing

    Records are deep-copied on the way in and out so callers cannot
    mutate the stored state without going through save_data().
    """

    def __init__(self, initial_data: Optional[List[Dict]] = None):
        """
        Initialize in-memory repository

        Args:
            initial_data: Optional initial records
        """
        self._data = copy.deepcopy(initial_data or [])
        self._lock = threading.RLock()

    def load_data(self) -> List[Dict]:
        return copy.deepcopy(self._data)

    def save_data(self, data: List[Dict]) -> None:
        self._data = copy.deepcopy(data)

    def update(self, mutate: Callable[[List[Dict]], T]) -> T:
        with self._lock:
            records = self.load_data()
            result = mutate(records)
            self.save_data(records)
            return result


class RepositoryFactory:
    """
    Factory class for creating repository instances

    This class provides a centralized way to create the repositories
    for each collection based on configuration.
    """

    COLLECTION_FILES = {
        'attendees': 'attendees.json',
        'events': 'events.json',
        'exhibitor_tokens': 'exhibitor_tokens.json',
        'leads': 'leads.json',
        'scanlogs': 'scanlogs.json',
    }

    @staticmethod
    def create_json_repository(file_path: str) -> JSONRepository:
        """
        Create a JSON repository instance

        Args:
            file_path: Path to the JSON file

        Returns:
            JSONRepository instance
        """
        return JSONRepository(file_path)

    @staticmethod
    def create_memory_repository(initial_data: Optional[List[Dict]] = None) -> InMemoryRepository:
        """
        Create an in-memory repository instance

        Args:
            initial_data: Optional initial records

        Returns:
            InMemoryRepository instance
        """
        return InMemoryRepository(initial_data)

    @staticmethod
    def create_repository(repo_type: str, **kwargs) -> DataRepository:
        """
        Create a repository based on type

        Args:
            repo_type: Type of repository ('json' or 'memory')
            **kwargs: Additional arguments for repository creation

        Returns:
            DataRepository instance

        Raises:
            ValueError: If repository type is not supported
        """
        if repo_type.lower() == 'json':
            if 'file_path' not in kwargs:
                raise ValueError("file_path is required for JSON repository")
            return RepositoryFactory.create_json_repository(kwargs['file_path'])

        elif repo_type.lower() == 'memory':
            return RepositoryFactory.create_memory_repository(
                kwargs.get('initial_data')
            )

        else:
            raise ValueError(f"Unsupported repository type: {repo_type}")

    @classmethod
    def create_collection_repositories(cls, data_dir: str) -> Dict[str, JSONRepository]:
        """
        Create one JSON repository per collection inside ``data_dir``

        Args:
            data_dir: Directory holding the collection files

        Returns:
            Mapping of collection name to repository
        """
        return {
            name: cls.create_json_repository(os.path.join(data_dir, filename))
            for name, filename in cls.COLLECTION_FILES.items()
        }
