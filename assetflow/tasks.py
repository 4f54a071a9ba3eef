"""Asset transform tasks for Assetflow.

Every task follows the same shape: select a source file set by glob
patterns, run it through the delegated transforms, write the results under
the task's own output directory, and hand the written files to the
live-reload channel when watch mode is running.

A failure in one source file is captured on the task result and the task
carries on with the rest, so one broken stylesheet does not stop the others
from being written. The task is still reported as failed afterwards.

Key functions:
- create_default_graph: Register every task and the named pipelines.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from .fsutils import delete_matching, read_file_utf8, select_files, select_relative, write_file
from .generators import generate_showcase, generate_svg_partials
from .graph import TaskContext, TaskGraph, TaskResult
from .templates import TemplateRenderer, load_data, load_helpers
from .transforms import (
    TransformError,
    autoprefix,
    compile_sass,
    concat,
    copy_image,
    group_media_queries,
    inline_source_map,
    minify_css,
    minify_js,
)

logger = logging.getLogger(__name__)

BUILD_SERIES = (
    "clean",
    "fonts",
    "sass",
    "hb",
    "scripts",
    "js_libraries",
    "copy_images",
    "showcase",
)


def _write_output(target: Path, content: str) -> Path:
    target.parent.mkdir(parents=True, exist_ok=True)
    write_file(target, content)
    return target


def _read_source(path: Path) -> str:
    try:
        return read_file_utf8(path)
    except UnicodeDecodeError as exc:
        raise TransformError(path, f"Not valid UTF-8: {exc}", exc) from exc


def _notify(context: TaskContext, result: TaskResult) -> None:
    if context.reloader is not None and result.outputs:
        context.reloader.stream(result.outputs)


def compile_styles(context: TaskContext) -> TaskResult:
    """Compile SCSS into prefixed, grouped and minified CSS."""
    cfg = context.config["sass"]
    result = TaskResult("sass")
    dest = context.path(cfg["dest"])
    include_paths = [context.path(p) for p in cfg["include_paths"]]

    sources = select_relative(context.project_root, cfg["sources"])
    if not sources:
        logger.warning("No style sources matched %s", cfg["sources"])

    for source, rel in sources:
        if source.name.startswith("_"):
            continue
        try:
            css, source_map = compile_sass(
                source,
                include_paths=include_paths,
                output_style=cfg["output_style"],
                source_map=cfg["sourcemaps"],
            )
        except TransformError as exc:
            result.errors.append(exc)
            continue
        if cfg["autoprefix"]:
            css = autoprefix(css, cfg["browsers"], context.project_root)
        if cfg["group_media_queries"]:
            css = group_media_queries(css)
        if cfg["minify"]:
            css = minify_css(css)
        if source_map:
            css = inline_source_map(css, source_map)
        result.outputs.append(_write_output(dest / rel.with_suffix(".css"), css))

    _notify(context, result)
    return result


def bundle_scripts(context: TaskContext) -> TaskResult:
    """Concatenate the custom scripts into one minified bundle."""
    cfg = context.config["scripts"]
    result = TaskResult("scripts")
    sources = select_files(context.project_root, cfg["sources"])
    if not sources:
        logger.warning("No scripts matched %s", cfg["sources"])
        return result

    contents: list[str] = []
    for source in sources:
        try:
            contents.append(_read_source(source))
        except TransformError as exc:
            result.errors.append(exc)

    target = context.path(cfg["dest"]) / cfg["bundle"]
    result.outputs.append(_write_output(target, minify_js(concat(contents))))
    _notify(context, result)
    return result


def minify_libraries(context: TaskContext) -> TaskResult:
    """Minify each third-party script on its own."""
    cfg = context.config["js_libraries"]
    result = TaskResult("js_libraries")
    dest = context.path(cfg["dest"])
    for source, rel in select_relative(context.project_root, cfg["sources"]):
        try:
            minified = minify_js(_read_source(source))
        except TransformError as exc:
            result.errors.append(exc)
            continue
        result.outputs.append(_write_output(dest / rel, minified))
    _notify(context, result)
    return result


def copy_fonts(context: TaskContext) -> TaskResult:
    """Copy fonts into one flat directory."""
    cfg = context.config["fonts"]
    result = TaskResult("fonts")
    dest = context.path(cfg["dest"])
    dest.mkdir(parents=True, exist_ok=True)
    for source in select_files(context.project_root, cfg["sources"]):
        target = dest / source.name
        shutil.copy2(source, target)
        result.outputs.append(target)
    return result


def copy_images(context: TaskContext) -> TaskResult:
    """Copy images, keeping their folder structure."""
    cfg = context.config["images"]
    result = TaskResult("copy_images")
    dest = context.path(cfg["dest"])
    for source, rel in select_relative(context.project_root, cfg["sources"]):
        target = dest / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        copy_image(source, target, optimize=cfg["optimize"])
        result.outputs.append(target)
    return result


def render_templates(context: TaskContext) -> TaskResult:
    """Render page templates with their JSON side files and front matter."""
    cfg = context.config["templates"]
    result = TaskResult("hb")
    root = context.path(cfg["root"])
    partials_dir = context.path(cfg["partials"])
    dest = context.path(cfg["dest"])

    data, data_errors = load_data(select_files(context.project_root, cfg["data"]))
    helpers, helper_errors = load_helpers(
        select_files(context.project_root, cfg["helpers"])
    )
    result.errors.extend(data_errors)
    result.errors.extend(helper_errors)

    renderer = TemplateRenderer(
        root,
        partials_dir,
        data=data,
        helpers=helpers,
        img_base=cfg["img_url_dev"] if cfg["dev"] else cfg["img_url_prod"],
        partial_extension=cfg["partial_extension"],
    )
    for source in select_files(context.project_root, cfg["sources"]):
        if partials_dir in source.parents:
            continue
        try:
            html = renderer.render_file(source)
        except TransformError as exc:
            result.errors.append(exc)
            continue
        result.outputs.append(_write_output(dest / source.relative_to(root), html))

    _notify(context, result)
    return result


def build_showcase(context: TaskContext) -> TaskResult:
    """Write the examples index page."""
    cfg = context.config["showcase"]
    index = generate_showcase(context.path(cfg["dir"]), cfg["index"])
    return TaskResult("showcase", outputs=[index])


def build_svg_partials(context: TaskContext) -> TaskResult:
    """Regenerate template partials from the SVG asset folders."""
    cfg = context.config["svg"]
    written = generate_svg_partials(
        context.path(cfg["base"]),
        context.path(cfg["destination"]),
        categories=cfg["categories"],
        extension=cfg["extension"],
    )
    return TaskResult("svg-hb", outputs=written)


def clean_markup(context: TaskContext) -> TaskResult:
    """Delete generated HTML files."""
    deleted = delete_matching(context.project_root, context.config["clean"])
    logger.debug("Deleted %d markup file(s)", len(deleted))
    return TaskResult("clean", outputs=deleted)


def clean_styles(context: TaskContext) -> TaskResult:
    """Delete generated stylesheets."""
    deleted = delete_matching(context.project_root, context.config["cleancss"])
    logger.debug("Deleted %d stylesheet(s)", len(deleted))
    return TaskResult("cleancss", outputs=deleted)


def serve_and_watch(context: TaskContext) -> None:
    """Serve the output with live reload and rerun tasks on changes."""
    from .server import DevServer

    DevServer(context.graph).start()


def create_default_graph(project_root: Path, config: dict) -> TaskGraph:
    """Create a graph with every task and the named pipelines.

    Args:
        project_root: Root directory of the project.
        config: Merged project configuration.

    Returns:
        Configured TaskGraph.
    """
    graph = TaskGraph(TaskContext(project_root, config))
    graph.add("sass", compile_styles, description=compile_styles.__doc__)
    graph.add("scripts", bundle_scripts, description=bundle_scripts.__doc__)
    graph.add("js_libraries", minify_libraries, description=minify_libraries.__doc__)
    graph.add("fonts", copy_fonts, description=copy_fonts.__doc__)
    graph.add("copy_images", copy_images, description=copy_images.__doc__)
    graph.add("hb", render_templates, description=render_templates.__doc__)
    graph.add("showcase", build_showcase, description=build_showcase.__doc__)
    graph.add("svg-hb", build_svg_partials, description=build_svg_partials.__doc__)
    graph.add("clean", clean_markup, description=clean_markup.__doc__)
    graph.add("cleancss", clean_styles, description=clean_styles.__doc__)
    graph.add("serve", serve_and_watch, description=serve_and_watch.__doc__)

    graph.add("build", graph.series(*BUILD_SERIES), description="Build everything once.")
    graph.add("images", graph.series("copy_images"), description="Copy images only.")
    graph.add(
        "watch",
        graph.series("build", "serve"),
        description="Build, then watch sources with live reload.",
    )
    graph.add("default", graph.series("watch"), description="Alias for watch.")
    return graph
