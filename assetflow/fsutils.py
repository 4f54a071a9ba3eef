"""Filesystem utilities for Assetflow.

This module contains the small, synchronous filesystem routines the tasks and
generators are built on: directory listing, recursive deletion, UTF-8 file
reads and writes, and glob selection of source file sets.

Key functions:
    list_directory: List immediate entries of a directory in lexicographic order.
    remove_tree: Recursively delete a directory tree, leaf-first.
    reset_directory: Delete a directory if present and create it fresh.
    write_file: Write UTF-8 text without creating parent directories.
    select_files: Resolve glob patterns into an ordered source file set.
    select_relative: Same, paired with each file's path below its pattern base.
    matches: Check a relative path against glob patterns.
    delete_matching: Delete every file selected by glob patterns.

Note:
    Glob patterns support ``**`` for any number of directories, ``{a,b}``
    alternatives and a leading ``!`` to exclude matches.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from pathlib import Path, PurePosixPath

BRACE_RE = re.compile(r"\{([^{}]*)\}")
WILDCARD_CHARS = set("*?[{")


def list_directory(path: Path) -> list[str]:
    """List the immediate entries of a directory.

    Args:
        path: Directory to list.

    Returns:
        Entry names sorted lexicographically.

    Raises:
        FileNotFoundError: If the directory does not exist.
    """
    return sorted(child.name for child in Path(path).iterdir())


def is_directory(path: Path) -> bool:
    """Check whether a path exists and is a directory."""
    return Path(path).is_dir()


def read_file_utf8(path: Path) -> str:
    """Read a text file as UTF-8."""
    return Path(path).read_text(encoding="utf-8")


def write_file(path: Path, content: str) -> None:
    """Write UTF-8 text to a file, overwriting any existing content.

    Parent directories are never created; callers ensure they exist.

    Args:
        path: Destination file path.
        content: Text to write.

    Raises:
        FileNotFoundError: If the parent directory is missing.
    """
    with open(path, "w", encoding="utf-8") as f:
        f.write(content)


def remove_tree(path: Path) -> None:
    """Recursively delete a directory, files first, then emptied directories.

    Deleting a path that does not exist is a no-op.

    Args:
        path: Root of the tree to delete. The root itself is removed too.
    """
    path = Path(path)
    try:
        entries = list_directory(path)
    except FileNotFoundError:
        return
    except NotADirectoryError:
        path.unlink()
        return
    for name in entries:
        child = path / name
        if child.is_dir() and not child.is_symlink():
            remove_tree(child)
        else:
            child.unlink()
    path.rmdir()


def reset_directory(path: Path) -> None:
    """Ensure a directory exists and is empty.

    Args:
        path: Directory to recreate.
    """
    path = Path(path)
    if path.exists():
        remove_tree(path)
    path.mkdir(parents=True, exist_ok=True)


def expand_braces(pattern: str) -> list[str]:
    """Expand ``{a,b}`` alternatives in a glob pattern.

    Examples:
        >>> expand_braces("images/*.{png,jpg}")
        ['images/*.png', 'images/*.jpg']
    """
    match = BRACE_RE.search(pattern)
    if not match:
        return [pattern]
    head, tail = pattern[: match.start()], pattern[match.end() :]
    expanded: list[str] = []
    for option in match.group(1).split(","):
        for candidate in expand_braces(f"{head}{option}{tail}"):
            if candidate not in expanded:
                expanded.append(candidate)
    return expanded


def glob_base(pattern: str) -> Path:
    """Return the static directory prefix of a glob pattern.

    Examples:
        >>> glob_base("app/sass/**/*.scss")
        PosixPath('app/sass')
    """
    static: list[str] = []
    for part in PurePosixPath(pattern).parts[:-1]:
        if WILDCARD_CHARS.intersection(part):
            break
        static.append(part)
    return Path(*static) if static else Path(".")


def _glob_to_regex(pattern: str) -> re.Pattern[str]:
    out: list[str] = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**/", i):
            out.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            out.append(".*")
            i += 2
        elif pattern[i] == "*":
            out.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            out.append("[^/]")
            i += 1
        else:
            out.append(re.escape(pattern[i]))
            i += 1
    return re.compile("".join(out) + r"\Z")


def _split_patterns(patterns: Iterable[str]) -> tuple[list[str], list[str]]:
    include: list[str] = []
    exclude: list[str] = []
    for pattern in patterns:
        if pattern.startswith("!"):
            exclude.extend(expand_braces(pattern[1:]))
        else:
            include.extend(expand_braces(pattern))
    return include, exclude


def matches(path: str | Path, patterns: Iterable[str]) -> bool:
    """Check whether a relative path matches any of the glob patterns.

    Args:
        path: Path relative to the project root.
        patterns: Glob patterns, optionally with ``!`` exclusions.

    Returns:
        True if an include pattern matches and no exclusion does.
    """
    text = Path(path).as_posix()
    include, exclude = _split_patterns(patterns)
    if any(_glob_to_regex(p).match(text) for p in exclude):
        return False
    return any(_glob_to_regex(p).match(text) for p in include)


def select_files(root: Path, patterns: Iterable[str]) -> list[Path]:
    """Resolve glob patterns into an ordered list of files.

    Patterns are applied in the given order; matches of a single pattern are
    sorted lexicographically and files matched twice keep their first position.

    Args:
        root: Directory the patterns are relative to.
        patterns: Glob patterns, optionally with ``!`` exclusions.

    Returns:
        Ordered list of matching file paths.
    """
    root = Path(root)
    include, exclude = _split_patterns(patterns)
    excluded = [_glob_to_regex(p) for p in exclude]
    seen: set[Path] = set()
    selected: list[Path] = []
    for pattern in include:
        for path in sorted(root.glob(pattern)):
            if not path.is_file() or path in seen:
                continue
            rel = path.relative_to(root).as_posix()
            if any(regex.match(rel) for regex in excluded):
                continue
            seen.add(path)
            selected.append(path)
    return selected


def select_relative(root: Path, patterns: Iterable[str]) -> list[tuple[Path, Path]]:
    """Like ``select_files``, pairing each file with its path below the pattern base.

    ``app/sass/**/*.scss`` selecting ``app/sass/pages/home.scss`` yields
    ``pages/home.scss`` as the relative part, which is where the output goes.

    Returns:
        Ordered list of (file path, path relative to its pattern's base).
    """
    root = Path(root)
    patterns = list(patterns)
    exclusions = [p for p in patterns if p.startswith("!")]
    seen: set[Path] = set()
    selected: list[tuple[Path, Path]] = []
    for pattern in patterns:
        if pattern.startswith("!"):
            continue
        base = root / glob_base(pattern)
        for path in select_files(root, [pattern, *exclusions]):
            if path in seen:
                continue
            seen.add(path)
            selected.append((path, path.relative_to(base)))
    return selected


def delete_matching(root: Path, patterns: Iterable[str]) -> list[Path]:
    """Delete every file selected by the glob patterns.

    Args:
        root: Directory the patterns are relative to.
        patterns: Glob patterns of files to delete.

    Returns:
        List of deleted paths.
    """
    deleted = select_files(root, patterns)
    for path in deleted:
        path.unlink()
    return deleted
