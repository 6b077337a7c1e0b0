"""
Storage adapters.

Every component that persists state goes through a StorageAdapter so the
same engine code runs against the real filesystem (LocalStorage) and against
an in-memory tree in tests (MemoryStorage).
"""

import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Dict, Iterable, List, Optional, Set, Union

from markflow.utils.exceptions import NotFoundError, ValidationError

PathLike = Union[str, Path]


@dataclass(frozen=True)
class StorageStat:
    is_file: bool
    is_directory: bool
    size: int = 0


@dataclass(frozen=True)
class StorageEntry:
    name: str
    is_file: bool
    is_directory: bool


class StorageAdapter(ABC):
    """Minimal file-system interface used by environments, discovery and the engine."""

    @abstractmethod
    def exists(self, path: PathLike) -> bool: ...

    @abstractmethod
    def read_bytes(self, path: PathLike) -> bytes: ...

    @abstractmethod
    def write_bytes(self, path: PathLike, content: bytes) -> None: ...

    @abstractmethod
    def mkdir(self, path: PathLike, recursive: bool = True) -> None: ...

    @abstractmethod
    def stat(self, path: PathLike) -> StorageStat: ...

    @abstractmethod
    def list(self, path: PathLike) -> List[StorageEntry]: ...

    @abstractmethod
    def rename(self, old_path: PathLike, new_path: PathLike) -> None: ...

    @abstractmethod
    def copy(self, src: PathLike, dest: PathLike) -> None: ...

    @abstractmethod
    def delete(self, path: PathLike) -> None: ...

    def read_text(self, path: PathLike) -> str:
        return self.read_bytes(path).decode("utf-8")

    def write_text(self, path: PathLike, content: str) -> None:
        self.write_bytes(path, content.encode("utf-8"))

    def is_file(self, path: PathLike) -> bool:
        try:
            return self.stat(path).is_file
        except NotFoundError:
            return False

    def is_dir(self, path: PathLike) -> bool:
        try:
            return self.stat(path).is_directory
        except NotFoundError:
            return False


class LocalStorage(StorageAdapter):
    """Storage backed by the real filesystem."""

    def exists(self, path: PathLike) -> bool:
        return Path(path).exists()

    def read_bytes(self, path: PathLike) -> bytes:
        path = Path(path)
        if not path.is_file():
            raise NotFoundError(f"File not found: {path}", path=path)
        return path.read_bytes()

    def write_bytes(self, path: PathLike, content: bytes) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)

    def mkdir(self, path: PathLike, recursive: bool = True) -> None:
        Path(path).mkdir(parents=recursive, exist_ok=True)

    def stat(self, path: PathLike) -> StorageStat:
        path = Path(path)
        if not path.exists():
            raise NotFoundError(f"Path not found: {path}", path=path)
        return StorageStat(
            is_file=path.is_file(),
            is_directory=path.is_dir(),
            size=path.stat().st_size if path.is_file() else 0,
        )

    def list(self, path: PathLike) -> List[StorageEntry]:
        path = Path(path)
        if not path.is_dir():
            raise NotFoundError(f"Directory not found: {path}", path=path)
        return [
            StorageEntry(name=child.name, is_file=child.is_file(), is_directory=child.is_dir())
            for child in sorted(path.iterdir(), key=lambda p: p.name)
        ]

    def rename(self, old_path: PathLike, new_path: PathLike) -> None:
        old_path, new_path = Path(old_path), Path(new_path)
        if not old_path.exists():
            raise NotFoundError(f"Path not found: {old_path}", path=old_path)
        if new_path.exists():
            raise ValidationError(f"Destination already exists: {new_path}")
        new_path.parent.mkdir(parents=True, exist_ok=True)
        old_path.rename(new_path)

    def copy(self, src: PathLike, dest: PathLike) -> None:
        src, dest = Path(src), Path(dest)
        if not src.is_file():
            raise NotFoundError(f"File not found: {src}", path=src)
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(src, dest)

    def delete(self, path: PathLike) -> None:
        path = Path(path)
        if path.is_dir():
            shutil.rmtree(path)
        elif path.exists():
            path.unlink()
        else:
            raise NotFoundError(f"Path not found: {path}", path=path)


class MemoryStorage(StorageAdapter):
    """
    In-memory storage used by tests and MemoryEnvironment.

    Files are a mapping of normalized POSIX path -> bytes; directories are
    either created explicitly or implied by the files beneath them.
    """

    def __init__(self, files: Optional[Dict[str, Union[str, bytes]]] = None):
        self._files: Dict[str, bytes] = {}
        self._dirs: Set[str] = set()
        for path, content in (files or {}).items():
            if isinstance(content, str):
                content = content.encode("utf-8")
            self.write_bytes(path, content)

    @staticmethod
    def _key(path: PathLike) -> str:
        return str(PurePosixPath(Path(path).as_posix()))

    @staticmethod
    def _prefix(key: str) -> str:
        return key.rstrip("/") + "/"

    def _parents(self, key: str) -> Iterable[str]:
        return (str(parent) for parent in PurePosixPath(key).parents)

    def _is_directory(self, key: str) -> bool:
        if key in self._dirs:
            return True
        prefix = self._prefix(key)
        return any(k.startswith(prefix) for k in self._files) or any(
            d.startswith(prefix) for d in self._dirs
        )

    def exists(self, path: PathLike) -> bool:
        key = self._key(path)
        return key in self._files or self._is_directory(key)

    def read_bytes(self, path: PathLike) -> bytes:
        key = self._key(path)
        if key not in self._files:
            raise NotFoundError(f"File not found: {key}", path=Path(key))
        return self._files[key]

    def write_bytes(self, path: PathLike, content: bytes) -> None:
        key = self._key(path)
        if key in self._dirs:
            raise ValidationError(f"Cannot write file over directory: {key}")
        self._dirs.update(self._parents(key))
        self._files[key] = bytes(content)

    def mkdir(self, path: PathLike, recursive: bool = True) -> None:
        key = self._key(path)
        if key in self._files:
            raise ValidationError(f"Cannot create directory over file: {key}")
        parent = str(PurePosixPath(key).parent)
        if not recursive and parent != key and not self.exists(parent):
            raise NotFoundError(f"Parent directory not found: {parent}", path=Path(parent))
        self._dirs.add(key)
        self._dirs.update(self._parents(key))

    def stat(self, path: PathLike) -> StorageStat:
        key = self._key(path)
        if key in self._files:
            return StorageStat(is_file=True, is_directory=False, size=len(self._files[key]))
        if self._is_directory(key):
            return StorageStat(is_file=False, is_directory=True)
        raise NotFoundError(f"Path not found: {key}", path=Path(key))

    def list(self, path: PathLike) -> List[StorageEntry]:
        key = self._key(path)
        if not self._is_directory(key):
            raise NotFoundError(f"Directory not found: {key}", path=Path(key))

        prefix = self._prefix(key)
        children: Dict[str, bool] = {}
        for file_key in self._files:
            if file_key.startswith(prefix):
                rest = file_key[len(prefix) :]
                name = rest.split("/", 1)[0]
                # A name is a file only when nothing lives beneath it
                children[name] = children.get(name, True) and "/" not in rest
        for dir_key in self._dirs:
            if dir_key.startswith(prefix) and dir_key != key:
                name = dir_key[len(prefix) :].split("/", 1)[0]
                children[name] = False

        return [
            StorageEntry(name=name, is_file=is_file, is_directory=not is_file)
            for name, is_file in sorted(children.items())
        ]

    def rename(self, old_path: PathLike, new_path: PathLike) -> None:
        old_key, new_key = self._key(old_path), self._key(new_path)
        if not self.exists(old_key):
            raise NotFoundError(f"Path not found: {old_key}", path=Path(old_key))
        if self.exists(new_key):
            raise ValidationError(f"Destination already exists: {new_key}")

        if old_key in self._files:
            self.write_bytes(new_key, self._files.pop(old_key))
            return

        old_prefix = self._prefix(old_key)
        for file_key in [k for k in self._files if k.startswith(old_prefix)]:
            self.write_bytes(new_key + "/" + file_key[len(old_prefix) :], self._files.pop(file_key))
        for dir_key in [d for d in self._dirs if d == old_key or d.startswith(old_prefix)]:
            self._dirs.discard(dir_key)
            self.mkdir(new_key + dir_key[len(old_key) :])
        self.mkdir(new_key)

    def copy(self, src: PathLike, dest: PathLike) -> None:
        self.write_bytes(dest, self.read_bytes(src))

    def delete(self, path: PathLike) -> None:
        key = self._key(path)
        if key in self._files:
            del self._files[key]
            return
        if not self._is_directory(key):
            raise NotFoundError(f"Path not found: {key}", path=Path(key))

        prefix = self._prefix(key)
        for file_key in [k for k in self._files if k.startswith(prefix)]:
            del self._files[file_key]
        self._dirs = {d for d in self._dirs if d != key and not d.startswith(prefix)}

    def snapshot(self) -> Dict[str, bytes]:
        """Copy of every stored file, for assertions in tests."""
        return dict(self._files)
