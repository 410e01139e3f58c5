"""Development server: file watching, rebuilds and live reload."""

from .app import create_app, inject_client, resolve_request_path
from .hub import LiveReloadHub
from .server import ensure_port_available, serve
from .session import DevSession, scope_for_events
from .watcher import ChangeEvent, ChangeKind, PollingWatcher, WatchPlan

__all__ = [
    "create_app",
    "inject_client",
    "resolve_request_path",
    "LiveReloadHub",
    "ensure_port_available",
    "serve",
    "DevSession",
    "scope_for_events",
    "ChangeEvent",
    "ChangeKind",
    "PollingWatcher",
    "WatchPlan",
]
