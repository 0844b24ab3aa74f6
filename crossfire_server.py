import argparse
import asyncio
import json
import logging
import os
import time

import websockets

from crossfire_errors import GameError, ValidationError
from crossfire_protocol import *
from crossfire_registry import RoomRegistry

log = logging.getLogger(__name__)


class CrossfireServer:
    def __init__(self, registry=None, tick_hz=SIM_TICK_HZ):
        self.registry = registry or RoomRegistry()
        self.tick_hz = tick_hz
        self.handlers = {
            MSG_CREATE: self._on_create,
            MSG_JOIN: self._on_join,
            MSG_INPUT: self._on_input,
            MSG_READY: self._on_ready,
            MSG_START: self._on_start,
            MSG_REMATCH: self._on_rematch,
            MSG_RESIGN: self._on_resign,
            MSG_LEAVE: self._on_leave,
            MSG_CHAT: self._on_chat,
            MSG_STATE: self._on_state,
            MSG_ROOMS: self._on_rooms,
        }

    # --- Request handlers ---

    def _authorize(self, data):
        return self.registry.authorize(data.get("room_id"), data.get("token"))

    def _on_create(self, data, now):
        room = self.registry.create_room(data.get("mode"), data.get("pieces"),
                                         data.get("difficulty"), now)
        return {
            "room_id": room.room_id,
            "token": room.host.token,
            "side": 0,
            "piece_count": room.piece_count,
            "pieces_needed": room.pieces_needed,
        }

    def _on_join(self, data, now):
        room, player = self.registry.join_room(data.get("room_id"), now)
        return {
            "room_id": room.room_id,
            "token": player.token,
            "side": player.side,
            "piece_count": room.piece_count,
            "pieces_needed": room.pieces_needed,
        }

    def _on_input(self, data, now):
        room, player = self._authorize(data)
        inp = data.get("input") or {}
        if not isinstance(inp, dict):
            raise ValidationError("BAD_MESSAGE", "input must be an object")
        room.submit_intent(player, inp.get("aim_dir"), inp.get("desired_angle"),
                           inp.get("shooting"), inp.get("reload"), now)
        return {}

    def _on_ready(self, data, now):
        room, player = self._authorize(data)
        return {"ready": room.set_ready(player, data.get("ready"), now)}

    def _on_start(self, data, now):
        room, player = self._authorize(data)
        return {"mode": room.start(player, now)}

    def _on_rematch(self, data, now):
        room, player = self._authorize(data)
        return {"state": room.rematch(player, now)}

    def _on_resign(self, data, now):
        room, player = self._authorize(data)
        return room.resign(player, now)

    def _on_leave(self, data, now):
        room, player = self._authorize(data)
        return {"deleted": self.registry.leave(room, player, now)}

    def _on_chat(self, data, now):
        room, player = self._authorize(data)
        room.post_chat(player, data.get("message"), now)
        return {}

    def _on_state(self, data, now):
        room, player = self._authorize(data)
        return room.snapshot(player, now)

    def _on_rooms(self, data, now):
        return self.registry.list_open_rooms(now)

    def dispatch(self, data, now=None):
        """Run one decoded request and return the reply body. Raises GameError."""
        now = time.time() if now is None else now
        if not isinstance(data, dict):
            raise ValidationError("BAD_MESSAGE", "Request must be a JSON object")
        mtype = data.get("t")
        if not isinstance(mtype, str):
            raise ValidationError("BAD_MESSAGE", "Message type must be a string")
        handler = self.handlers.get(mtype)
        if handler is None:
            raise ValidationError("BAD_MESSAGE", f"Unknown message type: {mtype!r}")
        reply = handler(data, now)
        reply["t"] = mtype + REPLY_SUFFIX
        return reply

    def handle_raw(self, message, now=None):
        req = None
        try:
            try:
                data = json.loads(message)
            except (TypeError, ValueError):
                raise ValidationError("BAD_JSON", "Invalid JSON body")
            if isinstance(data, dict):
                req = data.get("req")
            reply = self.dispatch(data, now)
        except GameError as e:
            log.debug(f"Rejected request: {e.code} {e.message}")
            reply = {"t": MSG_ERROR, **e.to_message()}
        if req is not None:
            reply["req"] = req
        return json.dumps(reply)

    # --- Transport ---

    async def handler(self, websocket):
        peer = websocket.remote_address[0] if websocket.remote_address else "unknown"
        log.info(f"New connection: {peer}")
        try:
            async for message in websocket:
                await websocket.send(self.handle_raw(message))
        except websockets.exceptions.ConnectionClosed:
            pass
        finally:
            log.info(f"Connection closed: {peer}")

    async def game_loop(self):
        period = 1.0 / self.tick_hz
        while True:
            start_t = time.time()
            self.registry.maintenance(start_t)
            elapsed = time.time() - start_t
            await asyncio.sleep(max(0, period - elapsed))

    async def start(self, host=DEFAULT_HOST, port=DEFAULT_PORT):
        async with websockets.serve(self.handler, host, port, ping_interval=20, ping_timeout=60):
            log.info(f"Crossfire server started on ws://{host}:{port}")
            await self.game_loop()


def main(argv=None):
    parser = argparse.ArgumentParser(description="Crossfire room server")
    parser.add_argument("--host", type=str, default=os.environ.get("CROSSFIRE_HOST", DEFAULT_HOST))
    parser.add_argument("--port", type=int, default=int(os.environ.get("CROSSFIRE_PORT", DEFAULT_PORT)))
    parser.add_argument("--tick-hz", type=float, default=SIM_TICK_HZ, help="Simulation ticks per second")
    parser.add_argument("--log-level", type=str, default="INFO")
    args = parser.parse_args(argv)

    logging.basicConfig(level=getattr(logging, args.log_level.upper(), logging.INFO),
                        format='[%(asctime)s] %(message)s')

    server = CrossfireServer(tick_hz=args.tick_hz)
    try:
        asyncio.run(server.start(args.host, args.port))
    except KeyboardInterrupt:
        log.info("Server stopped.")


if __name__ == "__main__":
    main()
