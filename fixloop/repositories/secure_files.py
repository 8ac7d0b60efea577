# fixloop/repositories/secure_files.py
"""Validated, atomic file access used by the caches and the applicator.

Every path handed to this module goes through :func:`validate_path` first.
Writes go to a sibling temporary file which is then ``os.replace``d over the
destination, so readers never observe a half-written file.
"""
from __future__ import annotations
import os
import stat
import tempfile
import uuid
from pathlib import Path
from typing import Union
from fixloop.errors import PathValidationError
from fixloop.services.log_service import logger

PathLike = Union[str, os.PathLike]

MAX_PATH_LENGTH = 4096
MAX_FILE_SIZE = 100 * 1024 * 1024
FORBIDDEN_PREFIXES = ("/proc", "/dev", "/sys")
SYSTEM_DIRECTORIES = ("/bin", "/boot", "/dev", "/etc", "/lib", "/lib64", "/proc", "/sbin", "/sys", "/usr")
DEFAULT_FILE_MODE = 0o644


def _under(path: str, prefix: str) -> bool:
    return path == prefix or path.startswith(prefix + "/")


def validate_path(path: PathLike) -> str:
    """Reject traversal, NUL bytes, doubled separators, pseudo filesystems and oversized paths.

    Returns the path as a string so callers can keep working with it.
    """
    raw = os.fspath(path)
    if not raw:
        raise PathValidationError("Path is empty")
    if len(raw) > MAX_PATH_LENGTH:
        raise PathValidationError(f"Path exceeds {MAX_PATH_LENGTH} characters")
    if "\0" in raw:
        raise PathValidationError("Path contains a NUL byte")
    if "//" in raw:
        raise PathValidationError(f"Path contains an empty segment: {raw}")
    if ".." in raw.replace("\\", "/").split("/"):
        raise PathValidationError(f"Path traversal is not allowed: {raw}")
    for prefix in FORBIDDEN_PREFIXES:
        if _under(raw, prefix):
            raise PathValidationError(f"Access to {prefix} is not allowed: {raw}")
    return raw


def is_path_within_directory(path: PathLike, directory: PathLike) -> bool:
    try:
        real_path = Path(validate_path(path)).resolve()
        real_dir = Path(validate_path(directory)).resolve()
    except (PathValidationError, OSError):
        return False
    return real_path == real_dir or real_dir in real_path.parents


def read_file(path: PathLike) -> str:
    """Read a regular file as UTF-8 text, keeping line endings untouched."""
    file_path = validate_path(path)
    if not os.path.isfile(file_path):
        raise FileNotFoundError(f"Not a regular file: {file_path}")
    size = os.path.getsize(file_path)
    if size > MAX_FILE_SIZE:
        raise PathValidationError(f"File too large ({size} bytes): {file_path}")
    with open(file_path, "r", encoding="utf-8", newline="") as f:
        return f.read()


def write_file(path: PathLike, content: str) -> None:
    """Atomically replace ``path`` with ``content``.

    The existing permission bits are kept; new files get 0644.
    """
    file_path = validate_path(path)
    if len(content.encode("utf-8")) > MAX_FILE_SIZE:
        raise PathValidationError(f"Content too large for {file_path}")

    directory = os.path.dirname(os.path.abspath(file_path))
    try:
        mode = stat.S_IMODE(os.stat(file_path).st_mode)
    except FileNotFoundError:
        mode = DEFAULT_FILE_MODE

    temp_path = os.path.join(directory, f".{os.path.basename(file_path)}.{uuid.uuid4().hex[:12]}.tmp")
    try:
        with open(temp_path, "w", encoding="utf-8", newline="") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(temp_path, mode)
        os.replace(temp_path, file_path)
    except BaseException:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise


def delete_file(path: PathLike) -> bool:
    """Delete a file. Returns False when it was already gone."""
    file_path = validate_path(path)
    try:
        os.unlink(file_path)
    except FileNotFoundError:
        return False
    return True


def create_temp_file(prefix: str = "fixloop_", suffix: str = "", directory: PathLike | None = None) -> str:
    """Create an empty 0600 temp file and return its path; the caller deletes it."""
    fd, temp_path = tempfile.mkstemp(prefix=prefix, suffix=suffix, dir=os.fspath(directory) if directory else None)
    os.close(fd)
    return temp_path


def validate_cache_directory(directory: PathLike) -> str:
    """Check that ``directory`` exists, is writable and is not a system location."""
    dir_path = validate_path(directory)
    if not os.path.isdir(dir_path):
        raise PathValidationError(f"Directory does not exist: {dir_path}")
    if not os.access(dir_path, os.W_OK):
        raise PathValidationError(f"Directory is not writable: {dir_path}")
    real = os.path.realpath(dir_path)
    for system_dir in SYSTEM_DIRECTORIES:
        if _under(real, system_dir):
            raise PathValidationError(f"Refusing to use system directory: {real}")
    logger.debug("Cache directory validated: %s", real)
    return dir_path
