"""Config hot reload - watch boardparse.toml and swap the board snapshot."""

import json
import signal
import sys
import threading
import time
from pathlib import Path
from typing import Any, Callable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .config import ConfigProvider


class DebounceHandler(FileSystemEventHandler):
    """File system event handler with debouncing for a single file."""

    def __init__(self, config_path: Path, on_change: Callable[[], Any], debounce_ms: int = 150):
        super().__init__()
        self.config_path = config_path
        self.on_change = on_change
        self.debounce_ms = debounce_ms

        self.dirty = False
        self.last_event_time = 0.0
        self._lock = threading.Lock()

    def _is_config(self, path: str) -> bool:
        return Path(path).name == self.config_path.name

    def _touch(self) -> None:
        with self._lock:
            self.dirty = True
            self.last_event_time = time.time()

    def on_any_event(self, event: FileSystemEvent) -> None:
        """Handle creation, modification and moves onto the config file."""
        if event.is_directory:
            return
        if event.event_type not in ("created", "modified", "moved"):
            return

        # Editors often save by writing a temp file and renaming it over
        paths = [str(event.src_path)]
        dest = getattr(event, "dest_path", "")
        if dest:
            paths.append(str(dest))
        if any(self._is_config(p) for p in paths):
            self._touch()

    def check_and_flush(self) -> None:
        """Check if debounce period has elapsed and flush if so."""
        with self._lock:
            if not self.dirty:
                return
            elapsed = (time.time() - self.last_event_time) * 1000
        if elapsed >= self.debounce_ms:
            self.flush()

    def flush(self) -> None:
        with self._lock:
            if not self.dirty:
                return
            self.dirty = False
        self.on_change()


class ConfigWatcher:
    """
    Background reloader: an observer thread feeds the debounce handler and
    a poller thread flushes it.
    """

    def __init__(self, provider: ConfigProvider, debounce_ms: int = 150, poll_s: float = 0.1):
        if provider.path is None:
            raise ValueError("ConfigWatcher needs a provider loaded from a file")
        self.provider = provider
        self.poll_s = poll_s
        self.handler = DebounceHandler(provider.path, provider.reload, debounce_ms)
        self._observer: Any = None
        self._poller: threading.Thread | None = None
        self._stop = threading.Event()

    def start(self) -> None:
        assert self.provider.path is not None
        self._observer = Observer()
        self._observer.schedule(
            self.handler, str(self.provider.path.parent.resolve()), recursive=False
        )
        self._observer.start()
        self._stop.clear()
        self._poller = threading.Thread(target=self._poll, name="config-reload", daemon=True)
        self._poller.start()

    def _poll(self) -> None:
        while not self._stop.wait(self.poll_s):
            self.handler.check_and_flush()

    def stop(self) -> None:
        self._stop.set()
        if self._poller is not None:
            self._poller.join()
            self._poller = None
        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
            self._observer = None
        # Pick up anything that arrived during shutdown
        self.handler.flush()

    def __enter__(self) -> "ConfigWatcher":
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.stop()


def watch_config(
    provider: ConfigProvider,
    debounce_ms: int = 150,
    quiet: bool = False,
    json_output: bool = False,
) -> int:
    """
    Watch the config file in the foreground and report reloads.

    Returns:
        Exit code
    """
    if provider.path is None or not provider.path.exists():
        print("Error: No config file to watch", file=sys.stderr)
        return 1

    running = True

    def handle_change() -> None:
        ok = provider.reload()
        if json_output:
            event = {"type": "reload", "ok": ok, "path": str(provider.path)}
            print(json.dumps(event), flush=True)
        elif not quiet:
            status = "Reloaded" if ok else "Reload failed (keeping previous config)"
            print(f"{status}: {provider.path}", flush=True)

    def signal_handler(signum: int, frame: Any) -> None:
        nonlocal running
        running = False
        if not quiet and not json_output:
            print("\nShutting down...", flush=True)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    handler = DebounceHandler(provider.path, handle_change, debounce_ms)
    observer = Observer()
    observer.schedule(handler, str(provider.path.parent.resolve()), recursive=False)

    if not quiet and not json_output:
        print(f"Watching {provider.path} (debounce: {debounce_ms}ms)", flush=True)
        print("Press Ctrl+C to stop", flush=True)

    observer.start()

    try:
        while running:
            time.sleep(0.1)
            handler.check_and_flush()
    finally:
        handler.flush()
        observer.stop()
        observer.join()

    if not quiet and not json_output:
        print("Watch stopped", flush=True)

    return 0
