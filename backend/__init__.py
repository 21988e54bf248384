"""Make the ``auditlog`` package importable from scripts, tools and tests without installing it."""

from pathlib import Path
import os
import sys
from typing import Iterable, Optional, Union

PathInput = Union[str, os.PathLike]


def _unique_paths(paths: Iterable[Path]) -> Iterable[Path]:
    seen = set()
    for path in paths:
        normalized = path.resolve()
        if normalized not in seen:
            seen.add(normalized)
            yield normalized


def _resolve_script_directory(script_location: Optional[PathInput]) -> Path:
    if script_location is None:
        return Path.cwd().resolve()
    script_path = Path(script_location).resolve()
    return script_path if script_path.is_dir() else script_path.parent


def bootstrap(script_location: Optional[PathInput] = None, *, prepend: bool = True) -> Path:
    """Put the repository root, ``backend/`` and the caller's directory on ``sys.path``.

    Parameters
    ----------
    script_location:
        Pass ``__file__`` from the calling script so its own directory is importable too.
    prepend:
        Insert the paths at the front of ``sys.path`` (default) so the local
        ``auditlog`` package wins over any installed copy.

    Returns
    -------
    Path
        The resolved repository root directory.
    """
    backend_directory = Path(__file__).resolve().parent
    repository_root = backend_directory.parent
    script_directory = _resolve_script_directory(script_location)

    for candidate in _unique_paths([repository_root, backend_directory, script_directory]):
        candidate_text = str(candidate)
        if candidate_text in sys.path:
            continue
        if prepend:
            sys.path.insert(0, candidate_text)
        else:
            sys.path.append(candidate_text)

    return repository_root


__all__ = ["bootstrap"]
