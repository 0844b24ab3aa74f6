"""
Tests for request dispatch and the JSON envelope.
"""

import json
import random

import pytest

from crossfire_errors import AuthorizationError, ValidationError
from crossfire_protocol import *
from crossfire_registry import RoomRegistry
from crossfire_server import CrossfireServer, main

T0 = 1000.0


@pytest.fixture
def server():
    return CrossfireServer(RoomRegistry(rng=random.Random(7)))


def send(server, payload, now=T0):
    return json.loads(server.handle_raw(json.dumps(payload), now))


class TestDispatch:
    def test_create_reply(self, server):
        reply = server.dispatch({"t": MSG_CREATE, "mode": MODE_SINGLE, "pieces": "3"}, T0)

        assert reply["t"] == "create_ok"
        assert reply["side"] == 0
        assert reply["piece_count"] == 3
        assert reply["pieces_needed"] == 2
        assert server.registry.get(reply["room_id"]).host.token == reply["token"]

    def test_join_then_state(self, server):
        created = server.dispatch({"t": MSG_CREATE}, T0)
        joined = server.dispatch({"t": MSG_JOIN, "room_id": created["room_id"]}, T0)

        assert joined["side"] == 1
        assert joined["token"] != created["token"]

        state = server.dispatch(
            {"t": MSG_STATE, "room_id": created["room_id"], "token": joined["token"]}, T0)
        assert state["t"] == "state_ok"
        assert state["me"] == 1

    def test_full_match_flow(self, server):
        created = server.dispatch({"t": MSG_CREATE, "mode": MODE_NETWORK}, T0)
        joined = server.dispatch({"t": MSG_JOIN, "room_id": created["room_id"]}, T0)
        host = {"room_id": created["room_id"], "token": created["token"]}
        guest = {"room_id": created["room_id"], "token": joined["token"]}

        assert server.dispatch({"t": MSG_READY, **guest}, T0)["ready"] is True
        assert server.dispatch({"t": MSG_START, **host}, T0)["mode"] == STATE_COUNTDOWN
        server.registry.maintenance(T0 + COUNTDOWN_SECONDS)
        server.dispatch({"t": MSG_INPUT, **host, "input": {"shooting": True, "aim_dir": 0.5}},
                        T0 + COUNTDOWN_SECONDS)
        server.registry.maintenance(T0 + COUNTDOWN_SECONDS + 0.02)

        state = server.dispatch({"t": MSG_STATE, **host}, T0 + COUNTDOWN_SECONDS + 0.03)
        assert state["state"] == STATE_RUNNING
        assert state["players"][0]["mag"] == MAG_CAPACITY - 1

        resigned = server.dispatch({"t": MSG_RESIGN, **guest}, T0 + 6)
        assert resigned == {"t": "resign_ok", "winner": 0, "left": False}
        assert server.dispatch({"t": MSG_REMATCH, **host}, T0 + 7)["state"] == STATE_LOBBY

    def test_chat_and_rooms(self, server):
        created = server.dispatch({"t": MSG_CREATE}, T0)
        creds = {"room_id": created["room_id"], "token": created["token"]}

        assert server.dispatch({"t": MSG_CHAT, **creds, "message": "gl hf"}, T0) == {"t": "chat_ok"}
        rooms = server.dispatch({"t": MSG_ROOMS}, T0)
        assert [r["room_id"] for r in rooms["rooms"]] == [created["room_id"]]
        assert rooms["online_players"] == 1

    def test_unknown_type(self, server):
        with pytest.raises(ValidationError) as exc:
            server.dispatch({"t": "fly"}, T0)

        assert exc.value.code == "BAD_MESSAGE"

    def test_bad_input_payload(self, server):
        created = server.dispatch({"t": MSG_CREATE}, T0)

        with pytest.raises(ValidationError):
            server.dispatch({"t": MSG_INPUT, "room_id": created["room_id"],
                             "token": created["token"], "input": [1, 2]}, T0)

    def test_leave_then_state(self, server):
        """Once the host leaves, the room and its tokens are gone."""
        created = server.dispatch({"t": MSG_CREATE}, T0)
        creds = {"room_id": created["room_id"], "token": created["token"]}

        assert server.dispatch({"t": MSG_LEAVE, **creds}, T0)["deleted"] is True
        with pytest.raises(AuthorizationError) as exc:
            server.dispatch({"t": MSG_STATE, **creds}, T0)
        assert exc.value.code == "ROOM_NOT_FOUND"


class TestEnvelope:
    """Tests for handle_raw's JSON replies."""

    def test_bad_json(self, server):
        reply = json.loads(server.handle_raw("{not json", T0))

        assert reply == {"t": MSG_ERROR, "code": "BAD_JSON", "message": "Invalid JSON body"}

    def test_non_object(self, server):
        assert send(server, [1, 2, 3])["code"] == "BAD_MESSAGE"

    def test_non_string_type(self, server):
        reply = send(server, {"t": [], "req": 3})

        assert reply["t"] == MSG_ERROR
        assert reply["code"] == "BAD_MESSAGE"
        assert reply["req"] == 3

    def test_non_decimal_piece_count(self, server):
        reply = json.loads(server.handle_raw('{"t": "create", "pieces": "\\u00b2"}', T0))

        assert reply["code"] == "BAD_PIECE_COUNT"
        assert len(server.registry) == 0

    def test_huge_angle_is_ignored(self, server):
        created = send(server, {"t": MSG_CREATE})
        frame = json.dumps({"t": MSG_INPUT, "room_id": created["room_id"], "token": created["token"],
                            "input": {"aim_dir": 1, "desired_angle": 10 ** 400}})

        reply = json.loads(server.handle_raw(frame, T0))

        assert reply["t"] == "input_ok"
        intent = server.registry.get(created["room_id"]).host.intent
        assert intent.desired_angle is None
        assert intent.aim_dir == 1.0

    def test_req_is_echoed(self, server):
        ok = send(server, {"t": MSG_CREATE, "req": 41})
        err = send(server, {"t": MSG_STATE, "req": "abc", "room_id": "x", "token": "y"})

        assert ok["req"] == 41
        assert ok["t"] == "create_ok"
        assert err == {"t": MSG_ERROR, "code": "ROOM_NOT_FOUND", "message": "Room not found", "req": "abc"}

    def test_state_error_code(self, server):
        created = send(server, {"t": MSG_CREATE, "mode": MODE_SINGLE})

        reply = send(server, {"t": MSG_READY, "room_id": created["room_id"], "token": created["token"]})

        assert reply["t"] == MSG_ERROR
        assert reply["code"] == "ROOM_SINGLE_PLAYER"


class TestMain:
    def test_cli_arguments(self, monkeypatch):
        captured = {}

        def fake_run(coro):
            captured["coro"] = coro
            coro.close()

        monkeypatch.setattr("crossfire_server.asyncio.run", fake_run)
        monkeypatch.setattr("crossfire_server.CrossfireServer.__init__",
                            lambda self, registry=None, tick_hz=SIM_TICK_HZ: captured.update(tick_hz=tick_hz))

        main(["--host", "0.0.0.0", "--port", "9000", "--tick-hz", "30"])

        assert captured["tick_hz"] == 30
        assert captured["coro"].cr_code.co_name == "start"
