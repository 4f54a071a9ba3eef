"""Project configuration for Assetflow.

Settings are read from ``assetflow.yaml`` in the project root and deep-merged
over ``DEFAULT_CONFIG``, so a project only needs to list the keys it changes.
All glob patterns and directories are relative to the project root.

Key functions:
- load_config: Load and merge the project configuration.
"""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any

import yaml

CONFIG_FILENAME = "assetflow.yaml"

DEFAULT_CONFIG: dict[str, Any] = {
    "dist_dir": "dist",
    "port": 3000,
    "ws_port": None,
    "sass": {
        "sources": ["app/sass/*.scss", "app/third-party/**/*.scss"],
        "include_paths": ["node_modules/susy/sass"],
        "output_style": "compressed",
        "browsers": ["> 1%", "last 3 versions", "ie 11"],
        "autoprefix": True,
        "group_media_queries": True,
        "minify": True,
        "sourcemaps": True,
        "dest": "dist/css",
    },
    "scripts": {
        "sources": ["app/js/custom/**/*.js"],
        "bundle": "customs.js",
        "dest": "dist/js",
    },
    "js_libraries": {
        "sources": ["app/js/libraries/**/*.js"],
        "dest": "dist/js",
    },
    "fonts": {
        "sources": ["app/third-party/*/fonts/*.*", "app/fonts/**/*.*"],
        "dest": "dist/fonts",
    },
    "images": {
        "sources": ["app/images/**/*.{png,jpg,svg,gif}"],
        "optimize": False,
        "dest": "dist/images",
    },
    "templates": {
        "sources": ["app/hb/**/*.html"],
        "root": "app/hb",
        "data": ["app/hb/data/**/*.json"],
        "helpers": ["app/hb/helpers/**/*.py"],
        "partials": "app/hb/partials",
        "partial_extension": ".hbs",
        "dev": True,
        "img_url_dev": "./images/",
        "img_url_prod": "./images/",
        "dest": "dist",
    },
    "showcase": {
        "dir": "dist/examples",
        "index": "component-showcase.html",
    },
    "svg": {
        "base": "app/images/assets",
        "categories": ["icons", "logos", "social", "stickers", "patterns"],
        "destination": "app/hb/partials/svg",
        "extension": ".hbs",
    },
    "clean": ["dist/**/*.html"],
    "cleancss": ["dist/css/*.css"],
    "watch": {
        "bindings": [
            {
                "patterns": ["app/hb/**/*.{html,json,js,py,hbs}"],
                "tasks": ["clean", "hb"],
            },
            {
                "patterns": ["app/sass/**/*.scss", "app/third-party/**/*.scss"],
                "tasks": ["cleancss", "sass"],
            },
            {
                "patterns": ["app/js/**/*.js"],
                "tasks": ["scripts"],
            },
        ],
        "reload": ["app/**/*.html"],
        "debounce": 0.2,
    },
}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge ``override`` into ``base`` recursively, returning ``base``.

    Nested mappings are merged; every other value (lists included) replaces
    the default outright.
    """
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def load_config(project_root: Path) -> dict[str, Any]:
    """Load project configuration from assetflow.yaml.

    Args:
        project_root: Root directory of the project.

    Returns:
        Dictionary containing configuration values, with defaults applied.
    """
    config = copy.deepcopy(DEFAULT_CONFIG)
    config_path = project_root / CONFIG_FILENAME
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
        if isinstance(loaded, dict):
            _deep_merge(config, loaded)
    return config
