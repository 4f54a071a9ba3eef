import json
from pathlib import Path

import pytest

from assetflow.config import load_config
from assetflow.tasks import create_default_graph


def write(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def create_project(root: Path) -> Path:
    app = root / "app"
    write(app / "sass" / "main.scss", "@import 'partial';\n$c: red;\n.main { color: $c; }\n")
    write(app / "sass" / "_partial.scss", ".partial { margin: 0; }\n")
    write(app / "third-party" / "vendor" / "vendor.scss", ".vendor { padding: 0; }\n")
    write(app / "js" / "custom" / "00_first.js", "var first = 1;\n")
    write(app / "js" / "custom" / "01_second.js", "var second = first + 1;\n")
    write(app / "js" / "libraries" / "lib.js", "function lib ( a ) { return a ; }\n")
    write(app / "fonts" / "body.woff", "font")
    write(app / "third-party" / "vendor" / "fonts" / "icons.woff", "font")
    write(app / "images" / "icon.svg", "<svg></svg>")
    write(app / "images" / "photos" / "cover.gif", "GIF89a")
    write(
        app / "hb" / "index.html",
        "---\ntitle: Home\n---\n<h1>{{ frontMatter.title }}</h1>"
        "<p>{{ heading }}</p><p>{{ site.name }}</p>{% include 'footer.hbs' %}\n",
    )
    write(app / "hb" / "index.json", json.dumps({"heading": "Welcome"}))
    write(app / "hb" / "examples" / "button.html", "<button>{{ label }}</button>\n")
    write(app / "hb" / "examples" / "button.json", json.dumps({"label": "Click"}))
    write(app / "hb" / "data" / "site.json", json.dumps({"name": "Demo"}))
    write(app / "hb" / "partials" / "footer.hbs", "<footer>foot</footer>")
    write(app / "images" / "assets" / "icons" / "arrow.svg", "<svg>arrow</svg>")
    write(
        root / "assetflow.yaml",
        "sass:\n  include_paths: []\n  autoprefix: false\n",
    )
    return root


@pytest.fixture
def project(tmp_path):
    return create_project(tmp_path / "site")


@pytest.fixture
def graph(project):
    return create_default_graph(project, load_config(project))
