"""File path resolution utilities for CLI."""

from pathlib import Path
from typing import Iterable, List


def resolve_file_path(file_path: str) -> Path:
    """
    Resolve a declaration file path relative to the current directory.

    Args:
        file_path: User-provided file path or name

    Returns:
        Resolved Path object

    Raises:
        FileNotFoundError: If the file does not exist or is not a regular file
    """
    path = Path(file_path)
    resolved_path = path.resolve() if path.is_absolute() else (Path.cwd() / path).resolve()

    if not resolved_path.exists():
        raise FileNotFoundError(
            f"File not found: {file_path}. Please check the file path and try again."
        )

    if not resolved_path.is_file():
        raise FileNotFoundError(
            f"Path is not a file: {file_path}. Please provide a valid file path."
        )

    return resolved_path


def resolve_file_paths(file_paths: Iterable[str]) -> List[Path]:
    """Resolve several paths, failing on the first missing one."""
    return [resolve_file_path(file_path) for file_path in file_paths]
