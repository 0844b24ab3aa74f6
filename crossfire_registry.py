import logging
import random
import time

from crossfire_errors import AuthorizationError, ValidationError
from crossfire_physics import short_id
from crossfire_protocol import *
from crossfire_room import Room

log = logging.getLogger(__name__)


class RoomRegistry:
    """Every live room, keyed by id. Rooms never reference each other."""

    def __init__(self, rng=None):
        self.rooms = {}
        self.rng = rng or random.Random()

    def __len__(self):
        return len(self.rooms)

    def parse_piece_setting(self, setting):
        if setting is None:
            return DEFAULT_PIECE_COUNT
        if setting == "random":
            return self.rng.choice(PIECE_COUNT_OPTIONS)
        count = None
        if isinstance(setting, str) and setting.strip().isdecimal():
            count = int(setting.strip())
        elif isinstance(setting, int) and not isinstance(setting, bool):
            count = setting
        if count not in PIECE_COUNT_OPTIONS:
            raise ValidationError("BAD_PIECE_COUNT", "Piece count must be 3, 5, 7 or 'random'")
        return count

    def create_room(self, mode=None, pieces=None, difficulty=None, now=None):
        now = time.time() if now is None else now
        mode = MODE_NETWORK if mode is None else mode
        if mode not in MODES:
            raise ValidationError("BAD_MODE", "Mode must be 'single' or 'network'")
        difficulty = DEFAULT_DIFFICULTY if difficulty is None else difficulty
        if difficulty not in DIFFICULTIES:
            raise ValidationError("BAD_DIFFICULTY", "Difficulty must be easy, medium or hard")
        piece_count = self.parse_piece_setting(pieces)

        room_id = short_id(10)
        while room_id in self.rooms:
            room_id = short_id(10)

        room = Room(room_id, mode, piece_count, difficulty, now=now,
                    rng=random.Random(self.rng.random()))
        self.rooms[room_id] = room
        log.info(f"Room {room_id} created ({mode}, {piece_count} pieces, {difficulty})")
        return room

    def get(self, room_id):
        if not isinstance(room_id, str) or not room_id.strip():
            raise ValidationError("BAD_ROOM_ID", "Missing room id")
        room = self.rooms.get(room_id.strip())
        if room is None:
            raise AuthorizationError("ROOM_NOT_FOUND", "Room not found")
        return room

    def authorize(self, room_id, token):
        room = self.get(room_id)
        return room, room.authorize(token)

    def join_room(self, room_id, now=None):
        room = self.get(room_id)
        return room, room.join(now)

    def leave(self, room, player, now=None):
        deleted = room.leave(player, now)
        if deleted:
            self.remove(room.room_id, "host left")
        return deleted

    def remove(self, room_id, reason):
        if self.rooms.pop(room_id, None) is not None:
            log.info(f"Room {room_id} destroyed: {reason}")

    def maintenance(self, now=None):
        """One scheduler firing: tick every room, then drop dead ones."""
        now = time.time() if now is None else now
        for room_id, room in list(self.rooms.items()):
            try:
                room.tick(now)
            except Exception:
                log.exception(f"Room {room_id} failed to tick")
                self.remove(room_id, "tick failed")
                continue

            if room.mode == MODE_NETWORK and not room.host.connected:
                self.remove(room_id, "host disconnected")
            elif now - room.updated_at > ROOM_TIMEOUT_SECONDS:
                self.remove(room_id, "idle")

    def online_players(self, now):
        return sum(
            1
            for room in self.rooms.values()
            for p in room.players
            if p.is_present(now)
        )

    def list_open_rooms(self, now=None):
        now = time.time() if now is None else now
        open_rooms = sorted(
            (room for room in self.rooms.values() if room.is_open(now)),
            key=lambda room: room.created_at,
            reverse=True,
        )[:OPEN_ROOMS_LIMIT]
        return {
            "rooms": [
                {
                    "room_id": room.room_id,
                    "piece_count": room.piece_count,
                    "created_at": int(room.created_at * 1000),
                }
                for room in open_rooms
            ],
            "online_players": self.online_players(now),
        }
