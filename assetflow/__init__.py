"""Assetflow static-site asset pipeline.

This package wires off-the-shelf file transformers (SCSS compilation, CSS and
JavaScript minification, Jinja2 template rendering, image copying) into an
ordered task graph, with a watch mode that reruns tasks and live-reloads the
browser.

The main entry point is the CLI module, which exposes the named pipelines
(build, images, watch) and the maintenance utilities (clean, cleancss,
showcase, svg-hb).
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
