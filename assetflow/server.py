"""Live reload and watch mode for Assetflow.

Serves the output directory with a reload script injected into HTML pages,
pushes reload messages over a websocket, and reruns tasks when watched
source files change.

Key classes:
- LiveReloadServer: HTTP + websocket service shared with the tasks that notify it.
- Watcher: Subscription table from glob patterns to callbacks.
- DevServer: Wires the graph, the reload service and the watcher together.
- _ReloadHandler: HTTP request handler that injects the reload script.
- _ChangeHandler: File system event handler feeding the watcher.

Events are dispatched one at a time on the watchdog observer thread. With
debouncing disabled, every matching event reruns its binding on that thread,
so a burst of saves can queue several runs of the same task back to back.
With a debounce, runs happen on timer threads once events go quiet; runs of
one binding never overlap.
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging
import threading
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import websockets
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .fsutils import matches
from .graph import TaskFailed, TaskGraph

logger = logging.getLogger(__name__)

WATCHED_EVENTS = {"created", "modified", "deleted", "moved"}


class _ReloadHandler(SimpleHTTPRequestHandler):
    """HTTP request handler that injects the live reload script into HTML pages.

    Attributes:
        reload_script: JavaScript connecting to the websocket server.
    """

    reload_script_template = """
    <script>
    (() => {{
      const ws = new WebSocket('ws://' + location.hostname + ':{ws_port}');
      ws.onmessage = (event) => {{
        const data = JSON.parse(event.data || '{{}}');
        if (data.type === 'reload') location.reload();
        if (data.type === 'css') {{
          document.querySelectorAll('link[rel="stylesheet"]').forEach((link) => {{
            const url = new URL(link.href);
            url.searchParams.set('livereload', Date.now());
            link.href = url.toString();
          }});
        }}
      }};
    }})();
    </script>
    """
    reload_script = reload_script_template.format(ws_port=3001)

    def end_headers(self):
        self.send_header("Cache-Control", "no-cache, no-store, must-revalidate")
        super().end_headers()

    def log_message(self, format, *args):
        logger.debug("%s - %s", self.address_string(), format % args)

    def send_head(self):
        path_obj = Path(self.translate_path(self.path))
        if path_obj.is_dir() and (path_obj / "index.html").exists():
            path_obj = path_obj / "index.html"
        if path_obj.suffix == ".html" and path_obj.is_file():
            content = path_obj.read_text(encoding="utf-8")
            if "</body>" in content:
                content = content.replace("</body>", f"{self.reload_script}</body>")
            else:
                content += self.reload_script
            encoded = content.encode("utf-8")
            self.send_response(200)
            self.send_header("Content-type", "text/html; charset=utf-8")
            self.send_header("Content-Length", str(len(encoded)))
            self.end_headers()
            self.wfile.write(encoded)
            return None
        return super().send_head()


class LiveReloadServer:
    """Serves the output directory and tells connected browsers to reload.

    Created once when watch mode starts and stopped when it ends; tasks
    receive it through their context and call ``stream`` after writing.

    Attributes:
        directory: Directory served over HTTP.
        http_port: Port for the HTTP server.
        ws_port: Port for websocket connections.
        _ws_clients: Set of connected websocket clients.
        _loop: Event loop running the websocket server.
    """

    def __init__(self, directory: Path, http_port: int = 3000, ws_port: int | None = None):
        self.directory = directory
        self.http_port = http_port
        self.ws_port = ws_port if ws_port is not None else http_port + 1
        self._reload_script = _ReloadHandler.reload_script_template.format(
            ws_port=self.ws_port
        )
        self._ws_clients: set = set()
        self._loop = asyncio.new_event_loop()
        self._stopped: asyncio.Future | None = None
        self._httpd: ThreadingHTTPServer | None = None

    def start(self) -> None:  # pragma: no cover - integration path
        threading.Thread(target=self._start_http, daemon=True).start()
        threading.Thread(target=self._start_ws, daemon=True).start()

    def stop(self) -> None:
        if self._httpd is not None:
            self._httpd.shutdown()
        if self._stopped is not None and self._loop.is_running():
            self._loop.call_soon_threadsafe(self._finish)

    def _finish(self) -> None:
        if self._stopped is not None and not self._stopped.done():
            self._stopped.set_result(None)

    def _start_http(self) -> None:  # pragma: no cover - integration path
        handler_cls = type(
            "_ReloadHandlerWithPort",
            (_ReloadHandler,),
            {"reload_script": self._reload_script},
        )
        handler = functools.partial(handler_cls, directory=str(self.directory))
        self._httpd = ThreadingHTTPServer(("", self.http_port), handler)
        logger.info("Serving %s at http://localhost:%d", self.directory, self.http_port)
        self._httpd.serve_forever()

    def _start_ws(self) -> None:  # pragma: no cover - integration path
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_until_complete(self._run_ws_server())
        except OSError as exc:
            logger.error("WebSocket server failed to start (port %d): %s", self.ws_port, exc)

    async def _run_ws_server(self) -> None:  # pragma: no cover - integration path
        self._stopped = self._loop.create_future()
        async with websockets.serve(self._ws_handler, "0.0.0.0", self.ws_port):
            await self._stopped

    async def _ws_handler(self, websocket):
        self._ws_clients.add(websocket)
        try:
            await websocket.wait_closed()
        finally:
            self._ws_clients.discard(websocket)

    def reload(self) -> None:
        """Ask every connected browser to reload the page."""
        self._broadcast({"type": "reload"})

    def stream(self, paths: Sequence[Path]) -> None:
        """Announce freshly written files.

        Stylesheets are swapped in place; anything else triggers a reload.
        """
        if paths and all(p.suffix == ".css" for p in paths):
            self._broadcast({"type": "css", "paths": [self._public_path(p) for p in paths]})
        else:
            self.reload()

    def _public_path(self, path: Path) -> str:
        try:
            return "/" + path.relative_to(self.directory).as_posix()
        except ValueError:
            return path.name

    def _broadcast(self, payload: dict) -> None:
        if not self._loop.is_running():
            logger.debug("Live reload not running; dropping %s", payload["type"])
            return
        message = json.dumps(payload)
        asyncio.run_coroutine_threadsafe(self._async_broadcast(message), self._loop)

    async def _async_broadcast(self, message: str):
        stale = set()
        for ws in list(self._ws_clients):
            try:
                await ws.send(message)
            except Exception:
                stale.add(ws)
        for ws in stale:
            self._ws_clients.discard(ws)


@dataclass
class WatchBinding:
    """A set of glob patterns bound to a callback.

    Attributes:
        patterns: Glob patterns relative to the project root.
        callback: Called with no arguments when a matching file changes.
        label: Name used in log messages.
        pending: Timer of the scheduled run while events are being debounced.
        running: Held while the callback runs, so runs never overlap.
    """

    patterns: list[str]
    callback: Callable[[], None]
    label: str
    pending: threading.Timer | None = None
    running: threading.Lock = field(default_factory=threading.Lock)


class Watcher:
    """Explicit subscription table from glob patterns to callbacks.

    With a debounce, every matching event restarts a per-binding timer and
    the callback runs once the events have been quiet for ``debounce``
    seconds. An event arriving while the callback runs schedules another run
    after it, so the output always catches up with the last save.

    Attributes:
        project_root: Root the patterns and event paths are relative to.
        debounce: Quiet period in seconds before a binding runs. ``0`` runs
            the callback synchronously once per event.
        bindings: Registered bindings, dispatched in registration order.
    """

    def __init__(self, project_root: Path, debounce: float = 0.0, ignore: Iterable[Path] = ()):
        self.project_root = project_root
        self.debounce = debounce
        self.ignore = [Path(p) for p in ignore]
        self.bindings: list[WatchBinding] = []
        self._observer: Observer | None = None
        self._lock = threading.Lock()

    def bind(self, patterns: Iterable[str], callback: Callable[[], None], label: str = "") -> WatchBinding:
        patterns = list(patterns)
        binding = WatchBinding(patterns, callback, label or ", ".join(patterns))
        self.bindings.append(binding)
        return binding

    def dispatch(self, path: Path) -> list[WatchBinding]:
        """Run or schedule every binding whose patterns match ``path``.

        Returns:
            The matching bindings.
        """
        try:
            rel = path.resolve().relative_to(self.project_root.resolve())
        except ValueError:
            return []
        for ignored in self.ignore:
            if ignored.resolve() in path.resolve().parents:
                return []

        matched: list[WatchBinding] = []
        for binding in self.bindings:
            if not matches(rel, binding.patterns):
                continue
            matched.append(binding)
            if self.debounce:
                logger.debug("%s changed; scheduling %s", rel.as_posix(), binding.label)
                self._schedule(binding)
            else:
                logger.info("%s changed; running %s", rel.as_posix(), binding.label)
                self._run(binding)
        return matched

    def flush(self) -> None:
        """Run every scheduled binding now instead of waiting for its timer."""
        with self._lock:
            due = [b for b in self.bindings if b.pending is not None]
            for binding in due:
                binding.pending.cancel()
                binding.pending = None
        for binding in due:
            self._run(binding)

    def _schedule(self, binding: WatchBinding) -> None:
        with self._lock:
            if binding.pending is not None:
                binding.pending.cancel()
            timer = threading.Timer(self.debounce, self._fire, args=(binding,))
            timer.daemon = True
            binding.pending = timer
            timer.start()

    def _fire(self, binding: WatchBinding) -> None:
        with self._lock:
            if binding.pending is not threading.current_thread():
                return
            binding.pending = None
        logger.info("Running %s", binding.label)
        self._run(binding)

    def _run(self, binding: WatchBinding) -> None:
        with binding.running:
            binding.callback()

    def start(self) -> None:
        handler = _ChangeHandler(self)
        observer = Observer()
        observer.schedule(handler, str(self.project_root), recursive=True)
        observer.start()
        self._observer = observer

    def stop(self) -> None:
        with self._lock:
            for binding in self.bindings:
                if binding.pending is not None:
                    binding.pending.cancel()
                    binding.pending = None
        if self._observer:
            self._observer.stop()
            self._observer.join()


class _ChangeHandler(FileSystemEventHandler):
    def __init__(self, watcher: Watcher):
        super().__init__()
        self.watcher = watcher

    def on_any_event(self, event):
        if event.is_directory or event.event_type not in WATCHED_EVENTS:
            return
        path = event.dest_path if event.event_type == "moved" else event.src_path
        if "node_modules" in Path(path).parts:
            return
        self.watcher.dispatch(Path(path))


class DevServer:
    """Watch mode: live reload plus task reruns on source changes.

    Attributes:
        graph: Task graph whose tasks are rerun.
        reloader: Live reload service, shared with the tasks via the context.
        watcher: Subscription table fed by the file system observer.
    """

    def __init__(self, graph: TaskGraph):
        self.graph = graph
        context = graph.context
        config = context.config
        watch_cfg = config["watch"]
        output_dir = context.path(config["dist_dir"])

        self.reloader = LiveReloadServer(
            output_dir,
            http_port=int(config["port"]),
            ws_port=config.get("ws_port"),
        )
        self.watcher = Watcher(
            context.project_root,
            debounce=float(watch_cfg.get("debounce") or 0),
            ignore=[output_dir],
        )
        for binding in watch_cfg["bindings"]:
            tasks = list(binding["tasks"])
            self.watcher.bind(
                binding["patterns"],
                functools.partial(self.run_tasks, tasks),
                label=" -> ".join(tasks),
            )
        if watch_cfg.get("reload"):
            self.watcher.bind(watch_cfg["reload"], self.reloader.reload, label="reload")

    def run_tasks(self, tasks: Sequence[str]) -> None:
        """Rerun tasks in series, logging failures instead of raising them."""
        try:
            self.graph.series(*tasks)(self.graph.context)
        except TaskFailed as exc:
            logger.error("%s", exc)
        except Exception:
            logger.exception("Rerun of %s failed", " -> ".join(tasks))

    def start(self) -> None:  # pragma: no cover - integration path
        self.graph.context.reloader = self.reloader
        self.reloader.start()
        self.watcher.start()
        logger.info("Watching %s for changes", self.graph.context.project_root)
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            self.stop()

    def stop(self) -> None:
        self.watcher.stop()
        self.reloader.stop()
        self.graph.context.reloader = None
