import logging
import random
import secrets
import threading
import time
from collections import deque

from crossfire_ai import AIController
from crossfire_errors import AuthorizationError, StateError, ValidationError
from crossfire_physics import make_pieces, short_id, step_world
from crossfire_player import HumanController, PlayerState, clamp_aim
from crossfire_protocol import *

log = logging.getLogger(__name__)


def _clock(now):
    return time.time() if now is None else now


def clean_chat_text(text):
    return " ".join(str(text or "").split())[:CHAT_MAX_CHARS]


class Room:
    """One match: two gun slots, the pieces, pellets in flight and a chat log.

    Lifecycle is lobby -> countdown -> running -> finished, with a warmup
    variant of running where the joiner slot is played by the AI. Every
    public method takes the room lock, so a snapshot never sees half a tick.
    """

    def __init__(self, room_id, mode=MODE_NETWORK, piece_count=DEFAULT_PIECE_COUNT,
                 ai_difficulty=DEFAULT_DIFFICULTY, now=None, rng=None):
        now = _clock(now)
        self.room_id = room_id
        self.mode = mode
        self.ai_difficulty = ai_difficulty
        self.rng = rng or random.Random()
        self.piece_count = piece_count
        self.pieces_needed = piece_count // 2 + 1
        self.lock = threading.RLock()

        self.players = [PlayerState(0), PlayerState(1)]
        self.host.mark_seen(now)
        if mode == MODE_SINGLE:
            self.joiner.controller = self._ai_controller()
            self.joiner.mark_seen(now)
            self.joiner.ready = True

        self.state = STATE_LOBBY
        self.created_at = now
        self.updated_at = now
        self.countdown_started_at = now
        self.run_started_at = 0.0
        self.last_tick_at = now

        self.pieces = make_pieces(piece_count)
        self.projectiles = []
        self.winner = None
        self.result_announced = False
        self.warmup = False
        self.chat = deque(maxlen=CHAT_MAX_MESSAGES)

        if mode == MODE_SINGLE:
            self.add_message("System", "Single-player room created.", now)
        else:
            self.add_message(
                "System",
                "Multiplayer room created. Press Practice to warm up vs AI while waiting for Player 2.",
                now,
            )

    @property
    def host(self):
        return self.players[0]

    @property
    def joiner(self):
        return self.players[1]

    def _ai_controller(self):
        return AIController(self.ai_difficulty, rng=self.rng)

    def ammo_in_play(self):
        return sum(p.ammo.held for p in self.players) + len(self.projectiles)

    def add_message(self, sender, text, now=None):
        clean = clean_chat_text(text)
        if not clean:
            return False
        self.chat.append({
            "id": short_id(),
            "sender": sender,
            "text": clean,
            "ts": int(_clock(now) * 1000),
        })
        return True

    # --- Resets ---

    def _reset_board(self, now):
        self.projectiles = []
        self.pieces = make_pieces(self.piece_count)
        self.winner = None
        for p in self.players:
            p.reset_for_match()
        self.countdown_started_at = now
        self.last_tick_at = now
        self.result_announced = False

    def _reset_match(self, now, to_lobby=False):
        self._reset_board(now)
        if self.mode == MODE_NETWORK:
            self.joiner.controller = HumanController()
        self.warmup = False
        self.run_started_at = 0.0
        self.state = STATE_LOBBY if to_lobby else STATE_COUNTDOWN
        self.add_message("System", "Match reset.", now)

    def _start_warmup(self, now, announce=False):
        self._reset_board(now)
        joiner = self.joiner
        joiner.controller = self._ai_controller()
        joiner.connected = False
        joiner.last_seen_at = 0.0
        joiner.last_input_at = 0.0
        joiner.ready = False
        self.warmup = True
        self.run_started_at = now
        self.state = STATE_RUNNING
        log.info(f"Room {self.room_id}: warmup vs AI started")
        if announce:
            self.add_message("System", "Warmup vs AI started while waiting for Player 2.", now)

    def _joiner_leaves(self, now, message):
        joiner = self.joiner
        joiner.drop_presence()
        joiner.token = secrets.token_hex(12)
        if self.mode == MODE_NETWORK and self.host.connected:
            self._start_warmup(now, announce=True)
        self.updated_at = now
        self.add_message("System", message, now)

    # --- Requests ---

    def authorize(self, token):
        if not token or not isinstance(token, str):
            raise AuthorizationError("INVALID_TOKEN", "Invalid token")
        for p in self.players:
            if secrets.compare_digest(p.token, token):
                return p
        raise AuthorizationError("INVALID_TOKEN", "Invalid token")

    def join(self, now=None):
        now = _clock(now)
        with self.lock:
            if self.mode != MODE_NETWORK:
                raise StateError("ROOM_SINGLE_PLAYER", "Room is single-player")
            joiner = self.joiner
            if joiner.connected:
                raise StateError("ROOM_FULL", "Room already full")

            joiner.controller = HumanController()
            joiner.token = secrets.token_hex(12)
            joiner.mark_seen(now)
            joiner.last_input_at = now
            joiner.ready = False
            joiner.intent.clear()
            if self.warmup:
                self._reset_match(now, to_lobby=True)
                self.add_message("System", "Warmup ended. Lobby ready for multiplayer start.", now)
            self.updated_at = now
            self.add_message("System", "Player 2 joined the room.", now)
            log.info(f"Room {self.room_id}: player 2 joined")
            return joiner

    def submit_intent(self, player, aim_dir=0.0, desired_angle=None, shooting=False,
                      reload_pressed=False, now=None):
        now = _clock(now)
        with self.lock:
            player.intent.update(aim_dir, desired_angle, shooting, reload_pressed)
            player.last_input_at = now
            player.mark_seen(now)
            self.updated_at = now

    def set_ready(self, player, ready=None, now=None):
        now = _clock(now)
        with self.lock:
            if self.mode != MODE_NETWORK:
                raise StateError("ROOM_SINGLE_PLAYER", "Ready is for multiplayer only")
            if self.state != STATE_LOBBY:
                raise StateError("NOT_IN_LOBBY", "Can only change ready state in lobby")
            if player.side != 1:
                raise StateError("NOT_JOINER", "Only joining player can toggle ready")

            player.ready = (not player.ready) if ready is None else bool(ready)
            player.mark_seen(now)
            self.updated_at = now
            return player.ready

    def start(self, player, now=None):
        now = _clock(now)
        with self.lock:
            if player.side != 0:
                raise StateError("NOT_HOST", "Only host can start")
            if self.state != STATE_LOBBY:
                raise StateError("MATCH_IN_PROGRESS", "Match is already in progress")

            networked = self.mode == MODE_NETWORK
            if networked and self.joiner.connected and not self.joiner.ready:
                raise StateError("OPPONENT_NOT_READY", "Waiting for opponent to ready up")

            player.mark_seen(now)
            self.updated_at = now
            if networked and not self.joiner.connected:
                self._start_warmup(now, announce=True)
                return "practice"

            self.state = STATE_COUNTDOWN
            self.host.ready = False
            if networked:
                self.joiner.ready = False
            self.countdown_started_at = now
            self.run_started_at = 0.0
            self.last_tick_at = now
            log.info(f"Room {self.room_id}: countdown started")
            return STATE_COUNTDOWN

    def rematch(self, player, now=None):
        now = _clock(now)
        with self.lock:
            if player.side != 0:
                raise StateError("NOT_HOST", "Only host can rematch")
            if self.state != STATE_FINISHED:
                raise StateError("NOT_FINISHED", "Match is not finished")

            player.mark_seen(now)
            self._reset_match(now, to_lobby=True)
            if self.mode == MODE_SINGLE:
                self.joiner.ready = True
            self.updated_at = now
            return self.state

    def resign(self, player, now=None):
        now = _clock(now)
        with self.lock:
            if self.warmup:
                player.mark_seen(now)
                self._reset_match(now, to_lobby=True)
                self.add_message("System", "Practice round resigned. Back to lobby.", now)
                self.updated_at = now
                return {"winner": None, "left": False}

            if self.state not in (STATE_RUNNING, STATE_COUNTDOWN):
                if self.mode == MODE_NETWORK and player.side == 1:
                    self._joiner_leaves(now, "Player 2 resigned and left the room.")
                    return {"winner": None, "left": True}
                raise StateError("NOT_ACTIVE", "Can only resign during an active match")

            player.mark_seen(now)
            winner = 1 - player.side
            self.state = STATE_FINISHED
            self.winner = winner
            self.result_announced = True
            for p in self.players:
                p.ready = False
                p.intent.hold_still()
            host_score, joiner_score = self.host.score, self.joiner.score
            self.add_message(
                "System",
                f"Player {player.side + 1} resigned. Final score: P1 {host_score} - P2 {joiner_score}. "
                f"Player {winner + 1} wins.",
                now,
            )
            self.updated_at = now
            log.info(f"Room {self.room_id}: player {player.side + 1} resigned")
            return {"winner": winner, "left": False}

    def leave(self, player, now=None):
        """Returns True when the room should be destroyed (the host left)."""
        now = _clock(now)
        with self.lock:
            if player.side == 0:
                return True
            self._joiner_leaves(now, "Player 2 left the room.")
            return False

    def post_chat(self, player, text, now=None):
        now = _clock(now)
        with self.lock:
            if not clean_chat_text(text):
                raise ValidationError("EMPTY_MESSAGE", "Message is empty")
            player.mark_seen(now)
            self.add_message(player.label, text, now)
            self.updated_at = now

    def is_open(self, now):
        if self.mode != MODE_NETWORK:
            return False
        if self.warmup:
            return True
        return self.state == STATE_LOBBY and not self.joiner.is_present(now)

    def snapshot(self, player, now=None):
        now = _clock(now)
        with self.lock:
            player.mark_seen(now)
            self.updated_at = now

            joiner = self.joiner
            networked = self.mode == MODE_NETWORK
            both_connected = all(p.connected for p in self.players)
            joiner_connected = networked and joiner.connected
            in_lobby = self.state == STATE_LOBBY

            countdown_ms = 0
            if self.state == STATE_COUNTDOWN:
                left = COUNTDOWN_SECONDS - (now - self.countdown_started_at)
                countdown_ms = int(max(0.0, left) * 1000)
            run_elapsed_ms = 0
            if self.state == STATE_RUNNING and self.run_started_at:
                run_elapsed_ms = int(max(0.0, now - self.run_started_at) * 1000)

            return {
                "room_id": self.room_id,
                "board": {
                    "width": BOARD_WIDTH,
                    "height": BOARD_HEIGHT,
                    "top": BOARD_TOP,
                    "bottom": BOARD_BOTTOM,
                    "goal_left_x": GOAL_LEFT_X,
                    "goal_right_x": GOAL_RIGHT_X,
                },
                "mode": self.mode,
                "state": self.state,
                "winner": self.winner,
                "piece_count": self.piece_count,
                "pieces_needed": self.pieces_needed,
                "countdown_ms": countdown_ms,
                "run_elapsed_ms": run_elapsed_ms,
                "host_can_start": (
                    player.side == 0 and in_lobby
                    and (not networked or not joiner_connected or (both_connected and joiner.ready))
                ),
                "host_can_rematch": player.side == 0 and self.state == STATE_FINISHED,
                "joiner_can_ready": networked and player.side == 1 and in_lobby and joiner.connected,
                "warmup": self.warmup,
                "me": player.side,
                "players": [p.public_stats(now) for p in self.players],
                "projectiles": [
                    {
                        "x": float(s.pos[0]),
                        "y": float(s.pos[1]),
                        "r": s.radius,
                        "owner": s.owner,
                        "vx": float(s.vel[0]),
                        "vy": float(s.vel[1]),
                    }
                    for s in self.projectiles
                ],
                "pieces": [
                    {
                        "id": p.id,
                        "x": float(p.pos[0]),
                        "y": float(p.pos[1]),
                        "r": p.radius,
                        "angle": p.angle,
                        "shape": p.shape,
                        "scored_by": p.scored_by,
                    }
                    for p in self.pieces
                ],
                "chat": [dict(m) for m in self.chat],
            }

    # --- Simulation ---

    def _expire_presence(self, now):
        for p in self.players:
            if p.is_ai or not p.connected:
                continue
            if now - p.last_seen_at > PRESENCE_ACTIVE_SECONDS:
                p.drop_presence()
                log.info(f"Room {self.room_id}: player {p.side + 1} timed out")

    def _check_winner(self, now):
        for side in (0, 1):
            if self.players[side].score < self.pieces_needed:
                continue
            if self.warmup:
                self._reset_match(now, to_lobby=True)
                self.add_message("System", "Practice round ended. Press Practice to start another.", now)
                return
            self.state = STATE_FINISHED
            self.winner = side
            break

        if self.state == STATE_FINISHED and not self.result_announced:
            winner_label = "Player 1" if self.winner == 0 else "Player 2"
            self.add_message(
                "System",
                f"Final score: P1 {self.host.score} - P2 {self.joiner.score}. {winner_label} wins.",
                now,
            )
            self.result_announced = True
            log.info(f"Room {self.room_id}: {winner_label} wins")

    def tick(self, now=None):
        now = _clock(now)
        with self.lock:
            self._expire_presence(now)

            dt = min(max(now - self.last_tick_at, 0.0), MAX_TICK_DT)
            self.last_tick_at = now

            if self.state in (STATE_LOBBY, STATE_FINISHED):
                return

            if self.state == STATE_COUNTDOWN:
                if now - self.countdown_started_at >= COUNTDOWN_SECONDS:
                    self.state = STATE_RUNNING
                    self.run_started_at = now
                    log.info(f"Room {self.room_id}: match running")
                return

            for p in self.players:
                p.ammo.finish_reload(now)
                if not p.is_ai and now - p.last_input_at > INPUT_STALE_SECONDS:
                    p.intent.hold_still()

            for p in self.players:
                shot = p.controller.step(p, self.pieces, dt, now)
                clamp_aim(p)
                if shot is not None:
                    self.projectiles.append(shot)

            outcome = step_world(self.pieces, self.projectiles, dt)
            self.projectiles = outcome.projectiles
            for side in outcome.scored:
                self.players[side].score += 1
            for side in outcome.collected + outcome.returned:
                self.players[side].ammo.stow()

            self._check_winner(now)
            self.updated_at = now
