import asyncio
import io
import json
import logging
import threading
from pathlib import Path

from assetflow.server import (
    DevServer,
    LiveReloadServer,
    Watcher,
    _ChangeHandler,
    _ReloadHandler,
)


class DummyEvent:
    def __init__(self, path, is_directory=False, event_type="modified", dest_path=""):
        self.src_path = path
        self.dest_path = dest_path
        self.is_directory = is_directory
        self.event_type = event_type


def make_handler(tmp_path: Path, path: str) -> _ReloadHandler:
    handler = _ReloadHandler.__new__(_ReloadHandler)
    handler.path = path
    handler.directory = str(tmp_path)
    handler.command = "GET"
    handler.request_version = "HTTP/1.1"
    handler.server_version = ""
    handler.sys_version = ""
    handler._headers_buffer = []
    handler.headers = {}
    handler.rfile = io.BytesIO(b"")
    handler.wfile = io.BytesIO()
    return handler


def test_reload_handler_injects_script(tmp_path):
    (tmp_path / "index.html").write_text("<html><body>Hello</body></html>", encoding="utf-8")
    handler = make_handler(tmp_path, "/index.html")
    codes = []
    handler.send_response = lambda code, message=None: codes.append(code)
    handler.send_header = lambda *args, **kwargs: None
    handler.end_headers = lambda: None

    result = _ReloadHandler.send_head(handler)
    body = handler.wfile.getvalue().decode()
    assert result is None
    assert codes == [200]
    assert "new WebSocket" in body
    assert body.index("WebSocket") < body.index("</body>")


def test_reload_handler_without_body_and_directory_index(tmp_path):
    (tmp_path / "plain.html").write_text("<html>No body here</html>", encoding="utf-8")
    handler = make_handler(tmp_path, "/plain.html")
    handler.send_response = lambda code, message=None: None
    handler.send_header = lambda *args, **kwargs: None
    handler.end_headers = lambda: None
    _ReloadHandler.send_head(handler)
    body = handler.wfile.getvalue().decode()
    assert body.startswith("<html>No body here</html>")
    assert "new WebSocket" in body

    examples = tmp_path / "examples"
    examples.mkdir()
    (examples / "index.html").write_text("<body>index</body>", encoding="utf-8")
    handler = make_handler(tmp_path, "/examples/")
    handler.send_response = lambda code, message=None: None
    handler.send_header = lambda *args, **kwargs: None
    handler.end_headers = lambda: None
    assert _ReloadHandler.send_head(handler) is None
    assert b"WebSocket" in handler.wfile.getvalue()


def test_send_head_falls_back_for_other_files(tmp_path):
    (tmp_path / "style.css").write_text("body{}", encoding="utf-8")
    handler = make_handler(tmp_path, "/style.css")
    handler.send_response = lambda code, message=None: None
    handler.send_header = lambda *args, **kwargs: None
    handler.end_headers = lambda: None

    result = _ReloadHandler.send_head(handler)
    assert result is not None
    assert result.read() == b"body{}"
    result.close()


def test_send_head_missing_file_is_404(tmp_path):
    handler = make_handler(tmp_path, "/missing.html")
    called = {}
    handler.send_error = lambda code, message=None: called.setdefault("error", code)
    assert _ReloadHandler.send_head(handler) is None
    assert called["error"] == 404


def test_end_headers_disables_caching(tmp_path):
    handler = make_handler(tmp_path, "/")
    headers = []
    handler.send_header = lambda key, value: headers.append((key, value))
    handler._headers_buffer = []
    _ReloadHandler.end_headers(handler)
    assert ("Cache-Control", "no-cache, no-store, must-revalidate") in headers


def test_live_reload_ports(tmp_path):
    server = LiveReloadServer(tmp_path, http_port=5055)
    assert server.ws_port == 5056

    explicit = LiveReloadServer(tmp_path, http_port=5055, ws_port=6000)
    assert explicit.ws_port == 6000
    assert f":{explicit.ws_port}" in explicit._reload_script


def test_async_broadcast_drops_stale_clients(tmp_path):
    server = LiveReloadServer(tmp_path)

    class GoodWS:
        def __init__(self):
            self.messages = []

        async def send(self, msg):
            self.messages.append(msg)

    class BadWS:
        async def send(self, msg):
            raise RuntimeError("fail")

    good = GoodWS()
    bad = BadWS()
    server._ws_clients = {good, bad}
    asyncio.run(server._async_broadcast("hello"))
    assert good.messages == ["hello"]
    assert bad not in server._ws_clients


def test_ws_handler_tracks_clients(tmp_path):
    server = LiveReloadServer(tmp_path)

    class DummyWS:
        def __init__(self):
            self.closed = False

        async def wait_closed(self):
            assert self in server._ws_clients
            self.closed = True

    ws = DummyWS()
    asyncio.run(server._ws_handler(ws))
    assert ws.closed
    assert ws not in server._ws_clients


def test_stream_sends_css_or_reload(tmp_path):
    server = LiveReloadServer(tmp_path / "dist")
    sent = []
    server._broadcast = lambda payload: sent.append(payload)

    server.stream([tmp_path / "dist" / "css" / "main.css"])
    server.stream([tmp_path / "dist" / "css" / "main.css", tmp_path / "dist" / "index.html"])
    server.reload()

    assert sent == [
        {"type": "css", "paths": ["/css/main.css"]},
        {"type": "reload"},
        {"type": "reload"},
    ]


def test_broadcast_is_noop_until_started(tmp_path, caplog):
    server = LiveReloadServer(tmp_path)
    with caplog.at_level(logging.DEBUG, logger="assetflow.server"):
        server.reload()
    assert "dropping reload" in caplog.text


def test_broadcast_schedules_on_running_loop(monkeypatch, tmp_path):
    server = LiveReloadServer(tmp_path)
    monkeypatch.setattr(server._loop, "is_running", lambda: True)
    sent = []

    class WS:
        async def send(self, msg):
            sent.append(json.loads(msg))

    server._ws_clients = {WS()}

    def fake_runner(coro, loop):
        new_loop = asyncio.new_event_loop()
        try:
            return new_loop.run_until_complete(coro)
        finally:
            new_loop.close()

    monkeypatch.setattr("assetflow.server.asyncio.run_coroutine_threadsafe", fake_runner)
    server.reload()
    assert sent == [{"type": "reload"}]


def test_watcher_dispatch_matches_patterns(tmp_path):
    watcher = Watcher(tmp_path)
    calls = []
    watcher.bind(["app/sass/**/*.scss"], lambda: calls.append("sass"), label="sass")
    watcher.bind(["app/**/*.html"], lambda: calls.append("reload"))

    ran = watcher.dispatch(tmp_path / "app" / "sass" / "parts" / "_grid.scss")
    assert [b.label for b in ran] == ["sass"]
    watcher.dispatch(tmp_path / "app" / "hb" / "index.html")
    watcher.dispatch(tmp_path / "app" / "notes.txt")
    assert calls == ["sass", "reload"]


def test_watcher_ignores_outside_and_ignored_paths(tmp_path):
    project = tmp_path / "site"
    project.mkdir()
    watcher = Watcher(project, ignore=[project / "dist"])
    calls = []
    watcher.bind(["**/*.html"], lambda: calls.append("hit"))

    assert watcher.dispatch(tmp_path / "elsewhere" / "index.html") == []
    assert watcher.dispatch(project / "dist" / "index.html") == []
    assert calls == []


def test_watcher_debounce_coalesces_events(tmp_path):
    watcher = Watcher(tmp_path, debounce=60)
    calls = []
    binding = watcher.bind(["*.js"], lambda: calls.append("js"))

    for _ in range(3):
        assert watcher.dispatch(tmp_path / "a.js") == [binding]
    assert calls == []
    assert binding.pending is not None

    watcher.flush()
    watcher.flush()
    assert calls == ["js"]
    assert binding.pending is None


def test_watcher_debounce_reruns_after_save_during_run(tmp_path):
    source = tmp_path / "main.scss"
    source.write_text("v1", encoding="utf-8")
    watcher = Watcher(tmp_path, debounce=60)
    builds = []

    def rebuild():
        builds.append(source.read_text(encoding="utf-8"))
        if len(builds) == 1:
            source.write_text("v2", encoding="utf-8")
            watcher.dispatch(source)

    watcher.bind(["*.scss"], rebuild)
    watcher.dispatch(source)
    watcher.flush()
    assert builds == ["v1"]

    watcher.flush()
    assert builds == ["v1", "v2"]


def test_watcher_debounce_timer_runs_binding(tmp_path):
    watcher = Watcher(tmp_path, debounce=0.01)
    done = threading.Event()
    watcher.bind(["*.js"], done.set)

    watcher.dispatch(tmp_path / "a.js")
    assert done.wait(5)


def test_watcher_stop_cancels_pending_runs(tmp_path):
    watcher = Watcher(tmp_path, debounce=60)
    calls = []
    binding = watcher.bind(["*.js"], lambda: calls.append("js"))

    watcher.dispatch(tmp_path / "a.js")
    watcher.stop()
    watcher.flush()
    assert binding.pending is None
    assert calls == []


def test_watcher_without_debounce_runs_every_event(tmp_path):
    watcher = Watcher(tmp_path)
    count = []
    watcher.bind(["*.js"], lambda: count.append(1))
    for _ in range(3):
        watcher.dispatch(tmp_path / "a.js")
    assert len(count) == 3


def test_change_handler_filters_events(tmp_path):
    seen = []

    class RecordingWatcher:
        def dispatch(self, path):
            seen.append(Path(path).name)

    handler = _ChangeHandler(RecordingWatcher())
    handler.on_any_event(DummyEvent(str(tmp_path / "dir"), is_directory=True))
    handler.on_any_event(DummyEvent(str(tmp_path / "a.scss"), event_type="opened"))
    handler.on_any_event(DummyEvent(str(tmp_path / "node_modules" / "x.js")))
    handler.on_any_event(DummyEvent(str(tmp_path / "b.scss")))
    handler.on_any_event(
        DummyEvent(str(tmp_path / "c.tmp"), event_type="moved", dest_path=str(tmp_path / "c.scss"))
    )
    assert seen == ["b.scss", "c.scss"]


def test_watcher_start_and_stop(monkeypatch, tmp_path):
    scheduled = []

    class DummyObserver:
        def schedule(self, handler, path, recursive):
            scheduled.append((path, recursive))

        def start(self):
            scheduled.append("started")

        def stop(self):
            scheduled.append("stopped")

        def join(self):
            scheduled.append("joined")

    monkeypatch.setattr("assetflow.server.Observer", DummyObserver)
    watcher = Watcher(tmp_path)
    watcher.start()
    watcher.stop()
    assert scheduled == [(str(tmp_path), True), "started", "stopped", "joined"]


def test_dev_server_binds_configured_tasks(graph, project):
    graph.context.config["port"] = 4000
    dev = DevServer(graph)

    assert dev.reloader.http_port == 4000
    assert dev.reloader.ws_port == 4001
    assert dev.watcher.debounce == 0.2
    assert [b.label for b in dev.watcher.bindings] == [
        "clean -> hb",
        "cleancss -> sass",
        "scripts",
        "reload",
    ]

    dev.watcher.debounce = 60
    ran = dev.watcher.dispatch(project / "app" / "sass" / "main.scss")
    assert [b.label for b in ran] == ["cleancss -> sass"]
    assert not (project / "dist" / "css" / "main.css").exists()
    dev.watcher.flush()
    assert (project / "dist" / "css" / "main.css").exists()

    ran = dev.watcher.dispatch(project / "app" / "hb" / "index.html")
    assert [b.label for b in ran] == ["clean -> hb", "reload"]
    dev.watcher.flush()
    assert (project / "dist" / "index.html").exists()
    dev.watcher.stop()


def test_dev_server_logs_failed_reruns(graph, project, caplog):
    (project / "app" / "sass" / "broken.scss").write_text(".a { color: $nope; }", encoding="utf-8")
    dev = DevServer(graph)

    with caplog.at_level(logging.ERROR):
        dev.run_tasks(["sass"])

    assert "Task 'sass' failed (1 error(s))" in caplog.text
    assert (project / "dist" / "css" / "main.css").exists()


def test_dev_server_survives_template_errors(graph, project, caplog):
    (project / "app" / "hb" / "aaa.html").write_text("{{ 1 // 0 }}", encoding="utf-8")
    (project / "app" / "hb" / "aaa.json").write_text("{}", encoding="utf-8")
    dev = DevServer(graph)

    with caplog.at_level(logging.ERROR):
        dev.run_tasks(["clean", "hb"])

    assert "ZeroDivisionError" in caplog.text
    assert (project / "dist" / "index.html").exists()


def test_dev_server_logs_unexpected_errors(graph, caplog):
    def explode(context):
        raise RuntimeError("disk on fire")

    graph.add("explode", explode)
    dev = DevServer(graph)

    with caplog.at_level(logging.ERROR):
        dev.run_tasks(["explode"])

    assert "Rerun of explode failed" in caplog.text
    assert "disk on fire" in caplog.text


def test_dev_server_stop_clears_reloader(monkeypatch, graph):
    dev = DevServer(graph)
    graph.context.reloader = dev.reloader
    stopped = []
    monkeypatch.setattr(dev.watcher, "stop", lambda: stopped.append("watcher"))
    monkeypatch.setattr(dev.reloader, "stop", lambda: stopped.append("reloader"))

    dev.stop()
    assert stopped == ["watcher", "reloader"]
    assert graph.context.reloader is None
