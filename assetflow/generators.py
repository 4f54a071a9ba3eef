"""Generators that derive files from a scanned directory.

Key functions:
- generate_showcase: Write an HTML page linking every file in the examples directory.
- generate_svg_partials: Wrap SVG sources into template partials, one per file.

Both degrade gracefully when their input directory is missing: they log a
diagnostic, scaffold the directory and carry on, so a missing input never
fails the surrounding build.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

from .fsutils import (
    is_directory,
    list_directory,
    read_file_utf8,
    remove_tree,
    reset_directory,
    write_file,
)

logger = logging.getLogger(__name__)

SHOWCASE_INDEX = "component-showcase.html"
SHOWCASE_ERROR = "Error: examples not found"
SVG_ERROR = "Error: svg sources not found"
SVG_CATEGORIES = ("icons", "logos", "social", "stickers", "patterns")


def showcase_entry(name: str) -> str:
    """Return the link markup for one example file."""
    return f'<a href="./{name}">{name}</a><br>'


def generate_showcase(examples_dir: Path, index_name: str = SHOWCASE_INDEX) -> Path:
    """Generate an index page linking to every entry in ``examples_dir``.

    Entries are listed lexicographically. The index file itself is not
    listed, so regenerating it gives the same output.

    If the directory is missing it is created and the index holds only
    ``SHOWCASE_ERROR``.

    Args:
        examples_dir: Directory containing example pages.
        index_name: File name of the generated index inside ``examples_dir``.

    Returns:
        Path of the written index file.
    """
    index_path = examples_dir / index_name
    if is_directory(examples_dir):
        names = [n for n in list_directory(examples_dir) if n != index_name]
        output = "".join(showcase_entry(name) for name in names)
    else:
        logger.error(SHOWCASE_ERROR)
        examples_dir.mkdir(parents=True)
        output = SHOWCASE_ERROR
    write_file(index_path, output)
    return index_path


def wrap_svg(content: str) -> str:
    """Enclose SVG markup in the icon wrapper used by the partials."""
    return f'<i class="icon-svg">{content}</i>'


def generate_svg_partials(
    base_dir: Path,
    destination: Path,
    categories: Iterable[str] = SVG_CATEGORIES,
    extension: str = ".hbs",
) -> list[Path]:
    """Convert SVG files into template partials.

    The destination tree is always rebuilt from scratch, so partials of
    deleted sources disappear on the next run. A missing source category is
    created empty and yields no partials.

    Args:
        base_dir: Folder holding one subfolder of SVG files per category.
        destination: Folder receiving one partial subfolder per category.
        categories: Category subfolder names.
        extension: Extension given to each partial, replacing the source one.

    Returns:
        List of written partial paths.
    """
    written: list[Path] = []
    remove_tree(destination)
    destination.mkdir(parents=True)

    for category in categories:
        source_dir = base_dir / category
        target_dir = destination / category
        reset_directory(target_dir)

        if not is_directory(source_dir):
            logger.error("%s: %s", SVG_ERROR, source_dir)
            source_dir.mkdir(parents=True)
            continue

        for name in list_directory(source_dir):
            source = source_dir / name
            if not source.is_file():
                continue
            target = target_dir / f"{Path(name).stem}{extension}"
            write_file(target, wrap_svg(read_file_utf8(source)))
            logger.info("Partial %s created: %s", target.name, target)
            written.append(target)
    return written
