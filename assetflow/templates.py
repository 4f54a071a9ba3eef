"""Template rendering for Assetflow.

This module uses Jinja2 to render the page templates of the ``hb`` task.
Each page is rendered with:

- the keys of its JSON side file (``about.html`` reads ``about.json``),
- its YAML front matter, exposed as ``frontMatter``,
- global data from every JSON file in the data directory, keyed by file stem,
- the built-in helpers ``img_url`` and ``cachebuster``, plus every public
  function of the Python helper modules,
- the partials directory on the loader path, also reachable through
  ``partial(name)``.

Key class:
- TemplateRenderer: Loads data, helpers and partials once, then renders pages.
"""

from __future__ import annotations

import json
import random
import re
import runpy
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

import yaml
from jinja2 import (
    Environment,
    FileSystemLoader,
    TemplateError,
    TemplateSyntaxError,
    select_autoescape,
)
from markupsafe import Markup

from .transforms import TransformError

FRONTMATTER_RE = re.compile(r"^---\s*\n(.*?)\n---\s*\n", re.DOTALL)
ABSOLUTE_URL_RE = re.compile(r"^https?://", re.IGNORECASE)


def extract_frontmatter(text: str) -> tuple[dict[str, Any], str]:
    """Extract YAML front matter from template content.

    Args:
        text: Raw file content.

    Returns:
        Tuple of (front matter dict, remaining content).

    Raises:
        yaml.YAMLError: If the front matter block is not valid YAML.
    """
    match = FRONTMATTER_RE.match(text)
    if not match:
        return {}, text
    data = yaml.safe_load(match.group(1)) or {}
    if not isinstance(data, dict):
        return {}, text[match.end() :]
    return data, text[match.end() :]


class _FrontMatterLoader(FileSystemLoader):
    """File system loader that hides the front matter block from Jinja2."""

    def get_source(self, environment, template):
        source, filename, uptodate = super().get_source(environment, template)
        match = FRONTMATTER_RE.match(source)
        if match:
            source = source[match.end() :]
        return source, filename, uptodate


def cachebuster_token() -> str:
    """Return a random 8-digit cache-busting token."""
    return f"{random.randint(0, 99999999):08d}"


def load_helpers(
    paths: Iterable[Path],
) -> tuple[dict[str, Callable[..., Any]], list[TransformError]]:
    """Collect the public functions defined in helper modules.

    Names starting with an underscore and names imported from elsewhere are
    skipped. Later modules override earlier ones. A module that fails to
    execute is reported and skipped.

    Returns:
        Tuple of (helpers by name, errors for modules that failed to load).
    """
    helpers: dict[str, Callable[..., Any]] = {}
    errors: list[TransformError] = []
    for path in paths:
        try:
            namespace = runpy.run_path(str(path))
        except Exception as exc:
            errors.append(TransformError(path, f"Helper module failed: {exc!r}", exc))
            continue
        module_name = namespace.get("__name__")
        for name, value in namespace.items():
            if name.startswith("_") or not callable(value):
                continue
            if getattr(value, "__module__", None) != module_name:
                continue
            helpers[name] = value
    return helpers, errors


class TemplateRenderer:
    """Renders page templates with their side data.

    Attributes:
        root: Directory page paths are relative to.
        partials_dir: Directory holding partial templates.
        partial_extension: Default extension of partials referenced by name.
        data: Global data mapping, keyed by data file stem.
        env: Jinja2 environment.
    """

    def __init__(
        self,
        root: Path,
        partials_dir: Path,
        data: dict[str, Any] | None = None,
        helpers: dict[str, Callable[..., Any]] | None = None,
        img_base: str = "./images/",
        partial_extension: str = ".hbs",
    ):
        """Initialize the renderer.

        Args:
            root: Template source root.
            partials_dir: Partials directory, searched before ``root``.
            data: Global data available to every page.
            helpers: Extra helper functions installed as globals.
            img_base: Prefix ``img_url`` puts in front of local image names.
            partial_extension: Extension appended by ``partial()`` when missing.
        """
        self.root = root
        self.partials_dir = partials_dir
        self.partial_extension = partial_extension
        self.data = data or {}
        self.img_base = img_base
        self.env = Environment(
            loader=_FrontMatterLoader([partials_dir, root]),
            autoescape=select_autoescape(["html", "xml"]),
            enable_async=False,
        )
        self._install_globals(helpers or {})

    def _install_globals(self, helpers: dict[str, Callable[..., Any]]) -> None:
        """Install the helpers in the Jinja environment."""
        self.env.globals["img_url"] = self.img_url
        self.env.globals["cachebuster"] = self.cachebuster
        self.env.globals["partial"] = self.partial
        self.env.globals.update(helpers)
        self.env.filters.update(helpers)

    def img_url(self, name: str) -> str:
        """Return the URL of an image, leaving absolute http(s) URLs alone."""
        if ABSOLUTE_URL_RE.match(name):
            return name
        return f"{self.img_base}{name}?cachebuster={cachebuster_token()}"

    @staticmethod
    def cachebuster(url: str) -> str:
        """Append a random cache-busting query string to a URL."""
        return f"{url}?cachebuster={cachebuster_token()}"

    def partial(self, name: str, **context: Any) -> Markup:
        """Render a partial by name, e.g. ``svg/icons/arrow``."""
        if not Path(name).suffix:
            name = f"{name}{self.partial_extension}"
        return Markup(self.env.get_template(name).render(**context))

    def render_file(self, path: Path) -> str:
        """Render one page template.

        Args:
            path: Page template inside ``root``.

        Returns:
            Rendered HTML.

        Raises:
            TransformError: If the side file is missing or invalid, the front
                matter is not valid YAML, or rendering raises, including
                errors raised by helpers.
        """
        side_file = path.with_suffix(".json")
        try:
            with open(side_file, encoding="utf-8") as f:
                page_data = json.load(f)
        except FileNotFoundError as exc:
            raise TransformError(path, f"Missing data file {side_file.name}", exc) from exc
        except json.JSONDecodeError as exc:
            raise TransformError(path, f"Invalid JSON in {side_file.name}: {exc}", exc) from exc

        try:
            front_matter, _ = extract_frontmatter(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            raise TransformError(path, f"Invalid front matter: {exc}", exc) from exc

        context: dict[str, Any] = dict(self.data)
        if isinstance(page_data, dict):
            context.update(page_data)
        else:
            context["data"] = page_data
        context["frontMatter"] = front_matter

        name = path.relative_to(self.root).as_posix()
        try:
            return self.env.get_template(name).render(**context)
        except TemplateSyntaxError as exc:
            raise TransformError(
                path,
                f"Template syntax error on line {exc.lineno}: {exc.message}",
                exc,
            ) from exc
        except TemplateError as exc:
            raise TransformError(path, f"{type(exc).__name__}: {exc}", exc) from exc
        except Exception as exc:
            # Errors raised by expressions and helpers while rendering
            raise TransformError(path, f"{type(exc).__name__}: {exc}", exc) from exc


def load_data(paths: Iterable[Path]) -> tuple[dict[str, Any], list[TransformError]]:
    """Load global template data from JSON files.

    Args:
        paths: JSON files; each is stored under its file stem.

    Returns:
        Tuple of (data mapping, errors for files that could not be parsed).
    """
    data: dict[str, Any] = {}
    errors: list[TransformError] = []
    for path in paths:
        try:
            with open(path, encoding="utf-8") as f:
                data[path.stem] = json.load(f)
        except json.JSONDecodeError as exc:
            errors.append(TransformError(path, f"Invalid JSON: {exc}", exc))
    return data, errors
