"""
FastAPI application serving the promoted output directory.

Files are always read from the output directory that is live at request time,
so clients keep getting the previous output while a rebuild is in progress.
HTML pages get the live reload client injected before ``</body>``.
"""

from __future__ import annotations

from pathlib import Path

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse, Response

from .. import __version__
from ..core.config import BuildTarget, DevServerConfig
from .hub import LiveReloadHub
from .session import DevSession

CLIENT_SCRIPT_PATH = "/__bundleforge/livereload.js"
STATUS_PATH = "/__bundleforge/status"

MEDIA_TYPES = {
    ".wasm": "application/wasm",
    ".js": "text/javascript",
    ".mjs": "text/javascript",
    ".map": "application/json",
}

LIVERELOAD_CLIENT = """\
(function () {
  var proto = location.protocol === "https:" ? "wss:" : "ws:";
  var url = proto + "//" + location.host + "%(path)s";
  function connect() {
    var ws = new WebSocket(url);
    ws.onmessage = function (event) {
      var msg = JSON.parse(event.data);
      if (msg.type === "reload") {
        location.reload();
      } else if (msg.type === "error") {
        console.error("[bundleforge] " + msg.stage + " failed: " + msg.error);
      }
    };
    ws.onclose = function () { setTimeout(connect, 1000); };
  }
  connect();
})();
"""


def inject_client(html: str, script_path: str = CLIENT_SCRIPT_PATH) -> str:
    """Insert the live reload script tag before the last ``</body>``."""
    tag = f'<script src="{script_path}"></script>'
    index = html.lower().rfind("</body>")
    if index == -1:
        return html + tag
    return html[:index] + tag + html[index:]


def resolve_request_path(output_dir: Path, request_path: str) -> Path | None:
    """Map a URL path onto a file in ``output_dir``. None when not servable."""
    root = output_dir.resolve()
    candidate = (root / request_path.lstrip("/")).resolve()
    if candidate != root and root not in candidate.parents:
        return None
    if candidate.is_dir():
        candidate = candidate / "index.html"
    return candidate if candidate.is_file() else None


def create_app(
    target: BuildTarget,
    session: DevSession | None = None,
    hub: LiveReloadHub | None = None,
    config: DevServerConfig | None = None,
) -> FastAPI:
    """Create the development server application.

    Args:
        target: Build target whose output directory is served.
        session: Development session, used for the status endpoint.
        hub: Live reload hub. Defaults to the session's hub.
        config: Dev server settings (live reload WebSocket path).
    """
    config = config or DevServerConfig()
    if hub is None:
        hub = session.hub if session is not None else LiveReloadHub()
    output_dir = target.output_path

    app = FastAPI(title="bundleforge dev server", version=__version__, docs_url=None, redoc_url=None)
    if target.compress:
        app.add_middleware(GZipMiddleware, minimum_size=500)
    app.state.hub = hub
    app.state.session = session

    @app.websocket(config.livereload_path)
    async def livereload(websocket: WebSocket) -> None:
        await hub.connect(websocket)
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            hub.disconnect(websocket)

    @app.get(CLIENT_SCRIPT_PATH)
    async def livereload_client() -> Response:
        body = LIVERELOAD_CLIENT % {"path": config.livereload_path}
        return Response(content=body, media_type="text/javascript")

    @app.get(STATUS_PATH)
    async def status() -> JSONResponse:
        data = session.status() if session is not None else {"state": "idle"}
        data["clients"] = len(hub.active_connections)
        return JSONResponse(data)

    @app.get("/{path:path}")
    async def serve_output(path: str) -> Response:
        file_path = resolve_request_path(output_dir, path)
        if file_path is None:
            raise HTTPException(status_code=404, detail=f"Not found: /{path}")
        if file_path.suffix.lower() in (".html", ".htm"):
            try:
                html = file_path.read_text(encoding="utf-8")
            except FileNotFoundError:
                # swapped out by a promotion mid-request
                raise HTTPException(status_code=404, detail=f"Not found: /{path}") from None
            return HTMLResponse(inject_client(html), headers={"Cache-Control": "no-cache"})
        return FileResponse(
            file_path,
            media_type=MEDIA_TYPES.get(file_path.suffix.lower()),
            headers={"Cache-Control": "no-cache"},
        )

    return app
