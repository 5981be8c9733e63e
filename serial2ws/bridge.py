"""aiohttp server exposing one serial device to many WebSocket clients."""

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

from aiohttp import web

from serial2ws.device import DeviceConfig, list_devices
from serial2ws.errors import ConflictError, DeviceIOError
from serial2ws.fanout import FanOutChannel
from serial2ws.manager import ConnectionManager
from serial2ws.pumps import DEFAULT_QUEUE_SIZE
from serial2ws.scrollback import DEFAULT_SCROLLBACK_SIZE, ScrollbackBuffer
from serial2ws.session import ClientSession

logger = logging.getLogger("serial2ws")

MANAGER_KEY = web.AppKey("manager", ConnectionManager)
SCROLLBACK_KEY = web.AppKey("scrollback", ScrollbackBuffer)
FANOUT_KEY = web.AppKey("fanout", FanOutChannel)


def _reply(ok: bool, message: str, status: int = 200) -> web.Response:
    return web.json_response({"ok": ok, "message": message}, status=status)


async def handle_list_ports(request: web.Request) -> web.Response:
    try:
        devices = await asyncio.to_thread(list_devices)
    except DeviceIOError as e:
        logger.error("Failed to list ports: %s", e)
        return _reply(False, f"Failed to list ports: {e}", status=500)
    return web.json_response([d.to_dict() for d in devices])


async def handle_connect(request: web.Request) -> web.Response:
    manager = request.app[MANAGER_KEY]
    try:
        config = DeviceConfig.from_dict(await request.json())
    except (json.JSONDecodeError, ValueError) as e:
        return _reply(False, f"Invalid config: {e}", status=400)
    try:
        await manager.open(config)
    except ConflictError as e:
        return _reply(False, str(e), status=409)
    except DeviceIOError as e:
        logger.error("Failed to open serial port %s: %s", config.port, e)
        return _reply(False, f"Failed to open port: {e}", status=400)
    return _reply(True, f"Connected to {config.port}")


async def handle_disconnect(request: web.Request) -> web.Response:
    port_name = await request.app[MANAGER_KEY].close()
    if port_name is None:
        return _reply(True, "Not connected")
    return _reply(True, f"Disconnected from {port_name}")


async def handle_status(request: web.Request) -> web.Response:
    status = await request.app[MANAGER_KEY].status()
    return web.json_response(status.to_dict())


async def handle_ws(request: web.Request) -> web.WebSocketResponse:
    ws = web.WebSocketResponse()
    await ws.prepare(request)
    session = ClientSession(
        ws,
        request.app[MANAGER_KEY],
        request.app[SCROLLBACK_KEY],
        request.app[FANOUT_KEY],
        peer=request.remote or "?",
    )
    try:
        await session.run()
    finally:
        await ws.close()
    return ws


@web.middleware
async def cors_middleware(request: web.Request, handler):
    """Allow a frontend served from another origin to use the API."""
    if request.method == "OPTIONS":
        response = web.Response()
    else:
        response = await handler(request)
    if isinstance(response, web.WebSocketResponse):
        return response
    response.headers["Access-Control-Allow-Origin"] = "*"
    response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
    response.headers["Access-Control-Allow-Headers"] = "Content-Type"
    return response


async def _shutdown_manager(app: web.Application) -> None:
    await app[MANAGER_KEY].shutdown()


def create_app(
    manager: ConnectionManager,
    static_dir: Optional[str] = None,
    cors: bool = False,
) -> web.Application:
    """Build the application serving the control API, /ws and the frontend."""
    app = web.Application(middlewares=[cors_middleware] if cors else [])
    app[MANAGER_KEY] = manager
    app[SCROLLBACK_KEY] = manager.scrollback
    app[FANOUT_KEY] = manager.fanout
    app.router.add_get("/api/ports", handle_list_ports)
    app.router.add_post("/api/connect", handle_connect)
    app.router.add_post("/api/disconnect", handle_disconnect)
    app.router.add_get("/api/status", handle_status)
    app.router.add_get("/ws", handle_ws)
    if static_dir:
        index = Path(static_dir) / "index.html"

        async def handle_index(request: web.Request) -> web.FileResponse:
            return web.FileResponse(index)

        app.router.add_get("/", handle_index)
        app.router.add_static("/", static_dir)
    app.on_shutdown.append(_shutdown_manager)
    return app


async def run_bridge_async(
    listen: str,
    http_port: int,
    scrollback_size: int = DEFAULT_SCROLLBACK_SIZE,
    queue_size: int = DEFAULT_QUEUE_SIZE,
    static_dir: Optional[str] = None,
    cors: bool = False,
    device: Optional[DeviceConfig] = None,
):
    """Start the HTTP server, optionally open a device, and serve forever."""
    scrollback = ScrollbackBuffer(scrollback_size)
    manager = ConnectionManager(FanOutChannel(), scrollback, queue_size=queue_size)
    app = create_app(manager, static_dir=static_dir, cors=cors)
    runner = web.AppRunner(app)
    await runner.setup()
    try:
        if device is not None:
            await manager.open(device)
        site = web.TCPSite(runner, listen, http_port)
        await site.start()
        logger.info("Server listening on http://%s:%s", listen, http_port)
        await asyncio.Event().wait()
    finally:
        # on_shutdown closes the serial connection and ends every session
        await runner.cleanup()
        logger.info("Server stopped")


def run_bridge(
    listen: str,
    http_port: int,
    scrollback_size: int = DEFAULT_SCROLLBACK_SIZE,
    queue_size: int = DEFAULT_QUEUE_SIZE,
    static_dir: Optional[str] = None,
    cors: bool = False,
    device: Optional[DeviceConfig] = None,
    verbose: bool = False,
):
    """Synchronous entry: run the asyncio bridge until interrupted."""
    if verbose:
        logging.basicConfig(
            level=logging.INFO,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    try:
        asyncio.run(
            run_bridge_async(
                listen,
                http_port,
                scrollback_size=scrollback_size,
                queue_size=queue_size,
                static_dir=static_dir,
                cors=cors,
                device=device,
            )
        )
    except KeyboardInterrupt:
        pass
