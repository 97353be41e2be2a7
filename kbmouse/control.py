"""Local HTTP endpoint for health checks and pointer/keyboard commands."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from aiohttp import web
from typing import Optional

from .bt_le.controller import BTLEController
from .validation import parse_bool, parse_int, parse_modifiers, parse_usage

logger = logging.getLogger(__name__)


class ControlServer:
    """Expose a JSON health snapshot and a small command API.

    Routes:
      GET  /health      -> controller status
      POST /mouse       {"dx", "dy", "wheel", "left", "right", "middle"}
      POST /keys/text   {"text": "..."}
      POST /keys/down   {"modifiers": "ctrl+shift" | [..] | int, "usage": int | "key": name}
      POST /keys/up     {}
    """

    def __init__(self, *, host: str, port: int, bt: BTLEController) -> None:
        self._host = host
        self._port = port
        self._bt = bt

        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None

    def make_app(self) -> web.Application:
        app = web.Application()
        app.add_routes([
            web.get("/health", self._handle_health),
            web.post("/mouse", self._handle_mouse),
            web.post("/keys/text", self._handle_text),
            web.post("/keys/down", self._handle_key_down),
            web.post("/keys/up", self._handle_key_up),
        ])
        return app

    async def start(self) -> None:
        if self._runner is not None:
            return

        self._runner = web.AppRunner(self.make_app(), access_log=None)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self._host, self._port)
        await self._site.start()
        logger.info("[ctl] control endpoint on http://%s:%d", self._host, self._port)

    async def stop(self) -> None:
        runner, self._runner = self._runner, None
        self._site = None
        if runner is None:
            return
        with contextlib.suppress(asyncio.CancelledError, Exception):
            await runner.cleanup()

    # ---------- handlers ----------
    async def _handle_health(self, _: web.Request) -> web.Response:
        snapshot = self.snapshot()
        status = 200 if snapshot["status"] == "ok" else 503
        return web.json_response(snapshot, status=status)

    async def _handle_mouse(self, request: web.Request) -> web.Response:
        body = await self._json_body(request)
        sent = self._bt.hid_client.move_pointer(
            parse_int(body.get("dx"), context="mouse.dx"),
            parse_int(body.get("dy"), context="mouse.dy"),
            parse_int(body.get("wheel"), context="mouse.wheel"),
            left=parse_bool(body.get("left"), context="mouse.left"),
            right=parse_bool(body.get("right"), context="mouse.right"),
            middle=parse_bool(body.get("middle"), context="mouse.middle"),
        )
        return web.json_response({"sent": sent})

    async def _handle_text(self, request: web.Request) -> web.Response:
        body = await self._json_body(request)
        text = body.get("text")
        if not isinstance(text, str):
            raise web.HTTPBadRequest(text="'text' must be a string")
        reports = self._bt.hid_client.send_keys(text)
        return web.json_response({"reports": reports})

    async def _handle_key_down(self, request: web.Request) -> web.Response:
        body = await self._json_body(request)
        modifier = parse_modifiers(body.get("modifiers"), context="keys.modifiers")
        client = self._bt.hid_client
        if "key" in body:
            usage = client.send_named_key(str(body["key"]), modifier)
            if usage is None:
                raise web.HTTPBadRequest(text=f"unknown key {body['key']!r}")
        else:
            usage = parse_usage(body.get("usage", 0), context="keys.usage")
            if usage is None:
                raise web.HTTPBadRequest(text="'usage' must be 0..255")
            client.send_key_down(modifier, usage)
        return web.json_response({"modifier": modifier, "usage": usage})

    async def _handle_key_up(self, _: web.Request) -> web.Response:
        self._bt.hid_client.send_key_up()
        return web.json_response({"ok": True})

    @staticmethod
    async def _json_body(request: web.Request) -> dict:
        if not request.can_read_body:
            return {}
        try:
            body = await request.json()
        except json.JSONDecodeError as exc:
            raise web.HTTPBadRequest(text=f"invalid JSON: {exc}") from exc
        if not isinstance(body, dict):
            raise web.HTTPBadRequest(text="JSON body must be an object")
        return body

    def snapshot(self) -> dict:
        ble = self._bt.status
        link = ble.get("link")

        degraded_reasons = []
        if not ble.get("running"):
            degraded_reasons.append("hid.not_running")
        if isinstance(link, dict):
            if not link.get("connected") and not link.get("advertising"):
                degraded_reasons.append("ble.not_advertising")
            if not link.get("connected"):
                degraded_reasons.append("ble.not_connected")

        return {
            "status": "ok" if not degraded_reasons else "degraded",
            "degraded_reasons": degraded_reasons,
            "hid": ble,
        }
