"""Delegating wrappers around the external transformers.

Every function here hands the actual work to a third-party library or
command-line tool and only adapts inputs and outputs:

- compile_sass: SCSS to CSS with libsass, including glob ``@import`` expansion.
- autoprefix: Vendor prefixes through the ``postcss`` CLI with autoprefixer.
- group_media_queries: Merge identical ``@media`` blocks, parsed with tinycss2.
- minify_css / minify_js: rcssmin and rjsmin.
- concat: Join file contents the way a bundle expects them.
- inline_source_map: Append a base64 source map comment.
- copy_image: Copy an image, optionally re-saved through Pillow.
"""

from __future__ import annotations

import base64
import logging
import os
import shutil
import subprocess
from collections.abc import Iterable, Sequence
from pathlib import Path

import rcssmin
import rjsmin
import sass
import tinycss2
from PIL import Image

from .fsutils import WILDCARD_CHARS

logger = logging.getLogger(__name__)

RASTER_EXTENSIONS = {".png", ".jpg", ".jpeg", ".webp"}


class TransformError(Exception):
    """Error raised while transforming a single source file.

    Attributes:
        source_path: Path to the source file that caused the error.
        message: Human-readable error message.
        original_error: The original exception that was caught.
    """

    def __init__(
        self,
        source_path: Path,
        message: str,
        original_error: Exception | None = None,
    ):
        self.source_path = source_path
        self.message = message
        self.original_error = original_error
        super().__init__(f"{source_path}: {message}")


def find_executable(name: str, project_root: Path | None = None) -> str | None:
    """Find an executable on PATH, then in the project's node_modules/.bin.

    Args:
        name: Executable name, e.g. ``postcss``.
        project_root: Project whose local node_modules should be searched.

    Returns:
        Full path to the executable, or None when it is not installed.
    """
    found = shutil.which(name)
    if found:
        return found
    if project_root is not None:
        local = project_root / "node_modules" / ".bin" / name
        if local.exists():
            return str(local)
    return None


def glob_importer(extensions: Sequence[str] = (".scss",)):
    """Build a libsass importer that expands ``@import "dir/*"`` statements.

    Matches are resolved relative to the importing file and imported in
    lexicographic order. Non-glob imports fall through to libsass.
    """

    def importer(path: str, prev: str):
        if not WILDCARD_CHARS.intersection(path):
            return None
        base = Path(prev).parent if prev and prev != "stdin" else Path.cwd()
        found = [
            p
            for p in sorted(base.glob(path))
            if p.is_file() and p.suffix in extensions
        ]
        return [(str(p), p.read_text(encoding="utf-8")) for p in found]

    return importer


def compile_sass(
    source: Path,
    include_paths: Iterable[Path] = (),
    output_style: str = "compressed",
    source_map: bool = False,
) -> tuple[str, str | None]:
    """Compile an SCSS file with libsass.

    Args:
        source: SCSS file to compile.
        include_paths: Extra directories searched by ``@import``.
        output_style: libsass output style (nested, expanded, compact, compressed).
        source_map: Whether to also produce a source map.

    Returns:
        Tuple of (css, source map JSON or None).

    Raises:
        TransformError: If libsass reports a compile error.
    """
    options = {
        "filename": str(source),
        "output_style": output_style,
        "include_paths": [str(p) for p in include_paths],
        "importers": [(0, glob_importer())],
    }
    if source_map:
        options.update(
            source_map_filename=str(source.with_suffix(".css.map")),
            output_filename_hint=str(source.with_suffix(".css")),
            source_map_contents=True,
            omit_source_map_url=True,
        )
    try:
        result = sass.compile(**options)
    except sass.CompileError as exc:
        raise TransformError(source, f"Sass compile error: {exc}", exc) from exc
    if source_map:
        css, map_json = result
        return css, map_json
    return result, None


def autoprefix(
    css: str, browsers: Sequence[str], project_root: Path | None = None
) -> str:
    """Add vendor prefixes with postcss and autoprefixer.

    Returns the CSS unchanged when the postcss CLI is not installed or fails.

    Args:
        css: Stylesheet text.
        browsers: Browserslist queries to target.
        project_root: Project whose node_modules may hold postcss.

    Returns:
        Prefixed CSS.
    """
    postcss_bin = find_executable("postcss", project_root)
    if not postcss_bin:
        logger.debug("postcss CLI not found; skipping autoprefixer.")
        return css

    env = dict(os.environ, BROWSERSLIST=", ".join(browsers))
    result = subprocess.run(
        [postcss_bin, "--use", "autoprefixer", "--no-map"],
        input=css,
        capture_output=True,
        text=True,
        env=env,
        cwd=str(project_root) if project_root else None,
    )
    if result.returncode != 0:
        logger.warning("Autoprefixer failed: %s", result.stderr.strip())
        return css
    return result.stdout


def group_media_queries(css: str) -> str:
    """Merge ``@media`` blocks sharing a query and move them after plain rules.

    Groups keep the order in which their query first appears. Stylesheets
    tinycss2 cannot parse cleanly are returned unchanged.
    """
    rules = tinycss2.parse_stylesheet(css, skip_whitespace=True)
    if any(rule.type == "error" for rule in rules):
        return css

    plain: list[str] = []
    groups: dict[str, list[str]] = {}
    for rule in rules:
        if (
            rule.type == "at-rule"
            and rule.lower_at_keyword == "media"
            and rule.content is not None
        ):
            query = tinycss2.serialize(rule.prelude).strip()
            groups.setdefault(query, []).append(tinycss2.serialize(rule.content))
        else:
            plain.append(rule.serialize())

    media = [f"@media {query}{{{''.join(bodies)}}}" for query, bodies in groups.items()]
    return "".join(plain + media)


def minify_css(css: str) -> str:
    """Minify CSS with rcssmin."""
    return rcssmin.cssmin(css)


def minify_js(source: str) -> str:
    """Minify JavaScript with rjsmin."""
    return rjsmin.jsmin(source)


def concat(contents: Iterable[str]) -> str:
    """Join file contents with newlines, in the given order."""
    return "\n".join(contents)


def inline_source_map(css: str, map_json: str) -> str:
    """Append a source map as an inline base64 data URL comment."""
    encoded = base64.b64encode(map_json.encode("utf-8")).decode("ascii")
    return (
        f"{css}\n/*# sourceMappingURL=data:application/json;"
        f"charset=utf-8;base64,{encoded} */\n"
    )


def copy_image(source: Path, dest: Path, optimize: bool = False) -> None:
    """Copy an image, re-encoding raster formats through Pillow when asked.

    Images Pillow cannot read are copied as-is.

    Args:
        source: Source image path.
        dest: Destination path; its parent must exist.
        optimize: Whether to re-save raster images with ``optimize=True``.
    """
    if optimize and source.suffix.lower() in RASTER_EXTENSIONS:
        try:
            with Image.open(source) as img:
                img.save(dest, optimize=True)
            return
        except (OSError, ValueError) as exc:
            logger.debug("Pillow could not optimize %s (%s); copying.", source, exc)
    shutil.copy2(source, dest)
