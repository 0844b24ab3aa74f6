import math
import secrets

from crossfire_ammo import AmmoState
from crossfire_physics import angle_wrap, clamp, make_projectile, normalize_aim_angle
from crossfire_protocol import *


def finite_or_none(value, allow_str=True):
    if isinstance(value, bool) or (isinstance(value, str) and not allow_str):
        return None
    try:
        value = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return value if math.isfinite(value) else None


class Intent:
    """What the client last asked for; replayed every tick until it goes stale."""

    def __init__(self):
        self.clear()

    def clear(self):
        self.aim_dir = 0.0
        self.desired_angle = None
        self.shooting = False
        self.reload_pressed = False

    def hold_still(self):
        self.aim_dir = 0.0
        self.desired_angle = None
        self.shooting = False

    def update(self, aim_dir=0.0, desired_angle=None, shooting=False, reload_pressed=False):
        aim_dir = clamp(finite_or_none(aim_dir) or 0.0, -1.0, 1.0)
        desired_angle = finite_or_none(desired_angle, allow_str=False)
        self.aim_dir, self.desired_angle = aim_dir, desired_angle
        self.shooting = bool(shooting)
        self.reload_pressed = bool(reload_pressed)


# --- Action primitives shared by humans and the AI ---

def clamp_aim(player):
    lo, hi = aim_bounds(player.side)
    player.gun_angle = clamp(player.gun_angle, lo, hi)


def turn_gun_toward(player, desired, rate, dt):
    """Rotate at most ``rate * dt`` towards ``desired``; returns the legal target angle."""
    lo, hi = aim_bounds(player.side)
    target = clamp(normalize_aim_angle(player.side, desired), lo, hi)
    step = rate * dt
    player.gun_angle += clamp(angle_wrap(target - player.gun_angle), -step, step)
    clamp_aim(player)
    return target


def fire(player, now):
    if not player.ammo.take_round(now):
        return None
    return make_projectile(player.side, player.gun_angle)


def request_reload(player, now):
    return player.ammo.request_reload(now)


class PlayerController:
    is_ai = False

    def step(self, player, pieces, dt, now):
        """Advance aim and act for one tick. Returns a new Projectile or None."""
        raise NotImplementedError


class HumanController(PlayerController):
    def step(self, player, pieces, dt, now):
        intent = player.intent
        if intent.desired_angle is not None:
            turn_gun_toward(player, intent.desired_angle, HUMAN_AIM_TRACK_SPEED, dt)
        else:
            player.gun_angle += intent.aim_dir * HUMAN_TURN_SPEED * dt
            clamp_aim(player)

        if intent.reload_pressed:
            request_reload(player, now)
            intent.reload_pressed = False

        if intent.shooting:
            return fire(player, now)
        return None


class PlayerState:
    def __init__(self, side, controller=None):
        self.side = side
        self.gun_angle = 0.0 if side == 0 else math.pi
        self.ammo = AmmoState()
        self.intent = Intent()
        self.token = secrets.token_hex(12)
        self.connected = False
        self.last_seen_at = 0.0
        self.last_input_at = 0.0
        self.ready = False
        self.score = 0
        self.controller = controller or HumanController()

    @property
    def is_ai(self):
        return self.controller.is_ai

    @property
    def label(self):
        return "AI" if self.is_ai else f"P{self.side + 1}"

    def reset_for_match(self):
        self.gun_angle = 0.0 if self.side == 0 else math.pi
        self.ammo.reset()
        self.intent.clear()
        self.score = 0
        self.ready = False

    def mark_seen(self, now):
        self.connected = True
        self.last_seen_at = now

    def drop_presence(self):
        self.connected = False
        self.ready = False
        self.intent.hold_still()

    def is_present(self, now):
        return (not self.is_ai and self.connected
                and now - self.last_seen_at <= PRESENCE_ACTIVE_SECONDS)

    def public_stats(self, now):
        return {
            "side": self.side,
            "mag": self.ammo.mag,
            "bin": self.ammo.bin,
            "reloading": self.ammo.reloading,
            "reload_ms": int(self.ammo.reload_remaining(now) * 1000),
            "gun_angle": self.gun_angle,
            "score": self.score,
            "connected": self.connected,
            "is_ai": self.is_ai,
            "ready": self.ready,
        }
