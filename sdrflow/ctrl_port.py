"""HTTP control port for calling message handlers of running blocks."""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Sequence

from aiohttp import web

from sdrflow.config import config
from sdrflow.messages import Callback, Sender

log = logging.getLogger("sdrflow")

DEFAULT_FRONTEND = Path("frontend/dist")
BLOCK_ROUTE = "/api/block/{blk:\\d+}/call/{handler:\\d+}"


def _lookup(inboxes: Sequence[Sender | None], blk: int) -> Sender | None:
    if 0 <= blk < len(inboxes):
        return inboxes[blk]
    return None


def build_app(
    inboxes: Sequence[Sender | None], frontend_path: str | os.PathLike[str] | None = None
) -> web.Application:
    """Create the web application serving the API and, optionally, a frontend."""
    app = web.Application()

    async def index(request: web.Request) -> web.Response:
        return web.Response(text=f"number of Blocks {len(inboxes)}")

    async def call(request: web.Request, data: Any) -> web.Response:
        blk = int(request.match_info["blk"])
        handler = int(request.match_info["handler"])
        inbox = _lookup(inboxes, blk)
        if inbox is None:
            return web.Response(text="block not found")
        tx: concurrent.futures.Future = concurrent.futures.Future()
        await inbox.send(Callback(port_id=handler, data=data, tx=tx))
        ret = await asyncio.wrap_future(tx)
        return web.Response(text=repr(ret))

    async def handler_id(request: web.Request) -> web.Response:
        return await call(request, None)

    async def handler_id_post(request: web.Request) -> web.Response:
        try:
            data = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise web.HTTPBadRequest(text="invalid json") from None
        return await call(request, data)

    app.router.add_get("/api/", index)
    app.router.add_get(BLOCK_ROUTE, handler_id)
    app.router.add_post(BLOCK_ROUTE, handler_id_post)

    if frontend_path is not None:
        root = Path(frontend_path).resolve()

        async def static(request: web.Request) -> web.StreamResponse:
            target = (root / request.match_info["path"]).resolve()
            if not target.is_relative_to(root):
                raise web.HTTPNotFound()
            if target.is_dir():
                target = target / "index.html"
            if not target.is_file():
                raise web.HTTPNotFound()
            return web.FileResponse(target)

        app.router.add_get("/{path:.*}", static)

    return app


def start_control_port(inboxes: Sequence[Sender | None]) -> threading.Thread | None:
    """Serve the control port on a background thread if it is enabled.

    Returns the server thread once the server is listening (or failed to
    start), or None if the control port is disabled.
    """
    cfg = config()
    if not cfg.ctrlport_enable:
        return None
    if cfg.ctrlport_bind is None:
        raise ValueError("ctrlport enabled but socket not set")
    host, port = cfg.ctrlport_bind

    frontend = cfg.frontend_path
    if frontend is None and DEFAULT_FRONTEND.is_dir():
        frontend = DEFAULT_FRONTEND

    app = build_app(list(inboxes), frontend)
    started = threading.Event()

    def serve() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        runner = web.AppRunner(app)
        try:
            loop.run_until_complete(runner.setup())
            site = web.TCPSite(runner, host, port)
            loop.run_until_complete(site.start())
        except Exception as exc:
            log.info("control port server failed to start")
            log.info("%r", exc)
            started.set()
            loop.close()
            return
        started.set()
        loop.run_forever()

    thread = threading.Thread(target=serve, name="ctrl-port", daemon=True)
    thread.start()
    started.wait()
    return thread