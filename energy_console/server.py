"""
HTTP Server

aiohttp surface for the console: health, device state, command
execution, telemetry, balance/Mode 2, connection plan, safe mode,
command log, notifications and flows.

Error mapping:
- ValidationError, UnknownCommand, malformed JSON -> 400
- unknown or disconnected device -> 404
- SafetyBlocked -> 409
- TransportError -> 502
- ProtocolTimeout -> 504
"""

import json

from aiohttp import web

from .common.config import HttpSettings
from .common.exceptions import (
    ConsoleError,
    DisconnectedError,
    ProtocolTimeout,
    SafetyBlocked,
    TransportError,
    UnknownCommand,
    ValidationError,
)
from .common.logging_setup import get_service_logger
from .services.flow import Flow

logger = get_service_logger("http")

CONSOLE_KEY = web.AppKey("console", object)

ERROR_STATUS = (
    (ValidationError, 400),
    (UnknownCommand, 400),
    (DisconnectedError, 404),
    (SafetyBlocked, 409),
    (ProtocolTimeout, 504),
    (TransportError, 502),
)


def _error_response(status: int, error: ConsoleError | str) -> web.Response:
    message = error.message if isinstance(error, ConsoleError) else str(error)
    return web.json_response({"error": message}, status=status)


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except ConsoleError as e:
        for error_type, status in ERROR_STATUS:
            if isinstance(e, error_type):
                return _error_response(status, e)
        logger.error(f"{request.method} {request.path} failed: {e}")
        return _error_response(500, e)


async def _json_body(request: web.Request) -> dict:
    if not request.can_read_body:
        return {}
    try:
        data = await request.json()
    except json.JSONDecodeError:
        raise ValidationError("request body is not valid JSON", field="body")
    if not isinstance(data, dict):
        raise ValidationError("request body must be a JSON object", field="body")
    return data


def _flag(data: dict, key: str = "enabled") -> bool:
    value = data.get(key)
    if not isinstance(value, bool):
        raise ValidationError("must be true or false", field=key)
    return value


def _console(request: web.Request):
    return request.app[CONSOLE_KEY]


def _device_or_404(console, device_id: str):
    device = console.devices.registry.get(device_id)
    if device is None:
        raise DisconnectedError(device_id)
    return device


# -- Health / devices -------------------------------------------------------

async def health_handler(request: web.Request) -> web.Response:
    return web.json_response(_console(request).get_status())


async def devices_handler(request: web.Request) -> web.Response:
    return web.json_response(_console(request).devices.get_status())


async def device_command_handler(request: web.Request) -> web.Response:
    console = _console(request)
    device_id = request.match_info["device_id"]
    data = await _json_body(request)

    command = data.get("command")
    if not command or not isinstance(command, str):
        raise ValidationError("command is required", field="command")
    args = data.get("args") or []
    if not isinstance(args, list):
        raise ValidationError("args must be a list", field="args")
    timeout_ms = data.get("timeout_ms")
    if timeout_ms is not None and (not isinstance(timeout_ms, (int, float)) or timeout_ms <= 0):
        raise ValidationError("timeout_ms must be a positive number", field="timeout_ms")

    if console.devices.registry.get_connected(device_id) is None:
        raise DisconnectedError(device_id)

    result = await console.devices.execute(
        device_id, command, args, timeout_ms, meta={"source": "http"}
    )
    return web.json_response({"device_id": device_id, "command": command, "result": result})


async def device_connect_handler(request: web.Request) -> web.Response:
    console = _console(request)
    record = console.devices.connect(request.match_info["device_id"])
    return web.json_response(record.to_dict())


async def device_disconnect_handler(request: web.Request) -> web.Response:
    console = _console(request)
    device_id = request.match_info["device_id"]
    _device_or_404(console, device_id)
    await console.devices.disconnect(device_id)
    return web.json_response({"disconnected": device_id})


async def device_estimate_handler(request: web.Request) -> web.Response:
    console = _console(request)
    device = _device_or_404(console, request.match_info["device_id"])
    data = await _json_body(request)
    estimate = console.balance.estimator.set_estimate(device.name, device.role, data)
    return web.json_response({"device_id": device.device_id, "estimate": estimate})


# -- Telemetry ----------------------------------------------------------------

async def telemetry_handler(request: web.Request) -> web.Response:
    telemetry = _console(request).telemetry
    return web.json_response({
        "paused": telemetry.paused,
        "samples": {k: v.to_dict() for k, v in telemetry.samples().items()},
    })


async def telemetry_polling_handler(request: web.Request) -> web.Response:
    telemetry = _console(request).telemetry
    data = await _json_body(request)
    if _flag(data, "paused"):
        telemetry.pause()
    else:
        telemetry.resume()
    return web.json_response({"paused": telemetry.paused})


# -- Balance ------------------------------------------------------------------

async def balance_handler(request: web.Request) -> web.Response:
    return web.json_response(_console(request).balance.get_status())


async def mode2_run_handler(request: web.Request) -> web.Response:
    result = await _console(request).balance.run_mode2("mode2-manual")
    return web.json_response(result.to_dict())


async def mode2_auto_handler(request: web.Request) -> web.Response:
    balance = _console(request).balance
    data = await _json_body(request)
    balance.set_auto_enabled(_flag(data))
    return web.json_response({"auto_enabled": balance.auto_enabled})


async def prefer_manual_handler(request: web.Request) -> web.Response:
    balance = _console(request).balance
    data = await _json_body(request)
    balance.estimator.set_prefer_manual(_flag(data))
    return web.json_response({"prefer_manual": balance.estimator.prefer_manual})


async def demand_inference_handler(request: web.Request) -> web.Response:
    inference = _console(request).balance.inference
    data = await _json_body(request)
    enabled = _flag(data) if "enabled" in data else None
    if "alpha" in data or "max_step_kw" in data:
        inference.set_tuning(data.get("alpha"), data.get("max_step_kw"))
    if enabled is not None:
        inference.set_enabled(enabled)
    return web.json_response(inference.get_status())


async def demand_requests_handler(request: web.Request) -> web.Response:
    balance = _console(request).balance
    data = await _json_body(request)
    rows = data.get("requests")
    if not isinstance(rows, list):
        raise ValidationError("requests must be a list", field="requests")
    pairs = [
        (str(r.get("consumer_id") or ""), r.get("kw"))
        for r in rows if isinstance(r, dict)
    ]
    result = await balance.apply_demand_requests(pairs)
    return web.json_response({"mode2": result.to_dict() if result else None})


async def surplus_handler(request: web.Request) -> web.Response:
    balance = _console(request).balance
    data = await _json_body(request)
    target_id = data.get("target_id")
    if not target_id:
        raise ValidationError("target_id is required", field="target_id")
    return web.json_response(await balance.route_surplus(str(target_id)))


# -- Connections --------------------------------------------------------------

async def connections_handler(request: web.Request) -> web.Response:
    graph = _console(request).balance.graph
    return web.json_response([e.to_dict() for e in graph.edges()])


async def connection_create_handler(request: web.Request) -> web.Response:
    graph = _console(request).balance.graph
    data = await _json_body(request)
    edge = graph.add(str(data.get("from_id") or ""), str(data.get("to_id") or ""), data.get("kw"))
    return web.json_response(edge.to_dict(), status=201)


async def connection_edit_handler(request: web.Request) -> web.Response:
    graph = _console(request).balance.graph
    data = await _json_body(request)
    if "kw" not in data:
        raise ValidationError("kw is required", field="kw")
    edge = graph.set_kw(str(data.get("from_id") or ""), str(data.get("to_id") or ""), data["kw"])
    return web.json_response(edge.to_dict())


async def connection_delete_handler(request: web.Request) -> web.Response:
    graph = _console(request).balance.graph
    from_id = request.query.get("from_id", "")
    to_id = request.query.get("to_id", "")
    if not graph.remove(from_id, to_id):
        return web.json_response({"error": f"no connection {from_id} -> {to_id}"}, status=404)
    return web.json_response({"removed": {"from_id": from_id, "to_id": to_id}})


# -- Safety / log / notifications -----------------------------------------------

async def safe_mode_handler(request: web.Request) -> web.Response:
    interlock = _console(request).devices.interlock
    data = await _json_body(request)
    interlock.set(_flag(data))
    return web.json_response({"safe_mode": interlock.engaged})


async def log_handler(request: web.Request) -> web.Response:
    command_log = _console(request).devices.command_log
    try:
        limit = int(request.query["limit"]) if "limit" in request.query else None
    except ValueError:
        raise ValidationError("limit must be an integer", field="limit")
    return web.json_response([e.to_dict() for e in command_log.entries(limit)])


async def log_clear_handler(request: web.Request) -> web.Response:
    _console(request).devices.command_log.clear()
    return web.json_response({"cleared": True})


async def notifications_handler(request: web.Request) -> web.Response:
    notifier = _console(request).notifier
    return web.json_response([n.to_dict() for n in notifier.entries()])


# -- Flows --------------------------------------------------------------------

async def flow_run_handler(request: web.Request) -> web.Response:
    flows = _console(request).flows
    data = await _json_body(request)
    summary = await flows.run(Flow.from_dict(data))
    return web.json_response(summary.to_dict())


async def flow_stop_handler(request: web.Request) -> web.Response:
    return web.json_response({"stopping": _console(request).flows.stop()})


async def flow_history_handler(request: web.Request) -> web.Response:
    flows = _console(request).flows
    return web.json_response({
        "running": flows.is_running,
        "last": flows.last_summary.to_dict() if flows.last_summary else None,
        "history": flows.history(),
    })


def build_app(console) -> web.Application:
    """Create the aiohttp application bound to a console coordinator"""
    app = web.Application(middlewares=[error_middleware])
    app[CONSOLE_KEY] = console

    app.router.add_get("/health", health_handler)

    app.router.add_get("/devices", devices_handler)
    app.router.add_post("/devices/{device_id}/commands", device_command_handler)
    app.router.add_post("/devices/{device_id}/connect", device_connect_handler)
    app.router.add_delete("/devices/{device_id}", device_disconnect_handler)
    app.router.add_put("/devices/{device_id}/estimate", device_estimate_handler)

    app.router.add_get("/telemetry", telemetry_handler)
    app.router.add_put("/telemetry/polling", telemetry_polling_handler)

    app.router.add_get("/balance", balance_handler)
    app.router.add_post("/balance/mode2", mode2_run_handler)
    app.router.add_put("/balance/mode2/auto", mode2_auto_handler)
    app.router.add_put("/balance/prefer-manual", prefer_manual_handler)
    app.router.add_put("/balance/demand-inference", demand_inference_handler)
    app.router.add_post("/balance/demand-requests", demand_requests_handler)
    app.router.add_post("/balance/surplus", surplus_handler)

    app.router.add_get("/connections", connections_handler)
    app.router.add_post("/connections", connection_create_handler)
    app.router.add_patch("/connections", connection_edit_handler)
    app.router.add_delete("/connections", connection_delete_handler)

    app.router.add_put("/safe-mode", safe_mode_handler)
    app.router.add_get("/log", log_handler)
    app.router.add_delete("/log", log_clear_handler)
    app.router.add_get("/notifications", notifications_handler)

    app.router.add_post("/flows/run", flow_run_handler)
    app.router.add_post("/flows/stop", flow_stop_handler)
    app.router.add_get("/flows", flow_history_handler)

    return app


class ConsoleServer:
    """Runs the aiohttp application on the configured host/port"""

    def __init__(self, console, settings: HttpSettings | None = None):
        self.settings = settings or HttpSettings()
        self.app = build_app(console)
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.settings.host, self.settings.port)
        await site.start()
        logger.info(f"HTTP server started on {self.settings.host}:{self.settings.port}")

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
