import math
import random
from dataclasses import dataclass

import numpy as np

from crossfire_physics import angle_wrap
from crossfire_player import PlayerController, fire, request_reload, turn_gun_toward
from crossfire_protocol import *


@dataclass(frozen=True)
class AIProfile:
    aim_speed: float  # rad/s
    shoot_delay: float  # seconds between shots
    jitter: float  # full width of the random aim error, rad
    reload_at: int  # reload once the magazine is down to this
    shoot_gate: float  # max misalignment that still fires, rad


DIFFICULTY = {
    "easy": AIProfile(aim_speed=1.8, shoot_delay=0.36, jitter=0.12, reload_at=4, shoot_gate=0.18),
    "medium": AIProfile(aim_speed=3.2, shoot_delay=0.22, jitter=0.07, reload_at=6, shoot_gate=0.12),
    "hard": AIProfile(aim_speed=4.8, shoot_delay=0.14, jitter=0.03, reload_at=9, shoot_gate=0.08),
}

# Weight of distance from the horizontal centre line versus distance to the enemy goal.
CENTER_WEIGHT = 0.8


class AIController(PlayerController):
    is_ai = True

    def __init__(self, difficulty=DEFAULT_DIFFICULTY, rng=None):
        self.difficulty = difficulty
        self.profile = DIFFICULTY[difficulty]
        self.rng = rng or random.Random()

    def pick_target(self, side, pieces):
        """Live piece closest to the enemy goal and to the centre line, or None."""
        live = [p for p in pieces if p.live]
        if not live:
            return None

        positions = np.array([p.pos for p in live])
        xs, ys = positions[:, 0], positions[:, 1]
        if side == 0:
            to_goal = GOAL_RIGHT_X - xs
        else:
            to_goal = xs - GOAL_LEFT_X
        cost = to_goal + np.abs(ys - BOARD_HEIGHT / 2) * CENTER_WEIGHT
        return live[int(np.argmin(cost))]

    def step(self, player, pieces, dt, now):
        target = self.pick_target(player.side, pieces)
        if target is None:
            return None

        profile = self.profile
        gx, gy = gun_position(player.side)
        tx, ty = target.pos
        desired = math.atan2(ty - gy, tx - gx) + (self.rng.random() - 0.5) * profile.jitter
        aim = turn_gun_toward(player, desired, profile.aim_speed, dt)

        ammo = player.ammo
        if ammo.mag <= profile.reload_at and ammo.bin > 0:
            request_reload(player, now)

        if ammo.reloading or ammo.mag <= 0:
            return None

        alignment = abs(angle_wrap(aim - player.gun_angle))
        if alignment < profile.shoot_gate and now - ammo.last_shot_at > profile.shoot_delay:
            return fire(player, now)
        return None
