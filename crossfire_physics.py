"""
Crossfire physics kernel.

Pure functions over pieces and pellets: integration, wall bounces,
piece/piece and pellet/piece contact, goal scoring and ammo collection.
Nothing here knows about rooms or players; ``step_world`` reports which
side earned what and the room applies it.
"""

import math
import uuid
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from crossfire_protocol import *


def clamp(n, lo, hi):
    return max(lo, min(hi, n))


def angle_wrap(a):
    """Wrap an angle into [-pi, pi)."""
    return (a + math.pi) % (2 * math.pi) - math.pi


def normalize_aim_angle(side, angle):
    """Pick the 2*pi alias of ``angle`` closest to the side's forward direction."""
    anchor = 0.0 if side == 0 else math.pi
    candidates = (angle, angle + 2 * math.pi, angle - 2 * math.pi)
    return min(candidates, key=lambda c: abs(c - anchor))


def short_id(length=6):
    return uuid.uuid4().hex[:length]


def _vec(value):
    return np.array(value, dtype=float)


@dataclass(eq=False)
class Piece:
    id: str
    shape: str
    pos: np.ndarray
    radius: float
    mass: float
    vel: np.ndarray = field(default_factory=lambda: np.zeros(2))
    spin: float = 0.0
    angle: float = 0.0
    scored_by: Optional[int] = None

    def __post_init__(self):
        self.pos = _vec(self.pos)
        self.vel = _vec(self.vel)

    @property
    def live(self) -> bool:
        return self.scored_by is None

    @property
    def inertia(self) -> float:
        return 0.5 * self.mass * self.radius ** 2


@dataclass(eq=False)
class Projectile:
    owner: int
    pos: np.ndarray
    vel: np.ndarray
    radius: float = AMMO_RADIUS
    ttl: float = AMMO_TTL
    id: str = field(default_factory=lambda: short_id(5))

    def __post_init__(self):
        self.pos = _vec(self.pos)
        self.vel = _vec(self.vel)


@dataclass
class StepOutcome:
    scored: List[int] = field(default_factory=list)  # one side per newly scored piece
    collected: List[int] = field(default_factory=list)  # pellets caught by a goal
    returned: List[int] = field(default_factory=list)  # pellets expired on a side's half
    projectiles: List[Projectile] = field(default_factory=list)  # still in flight


def make_pieces(count):
    """Lay pieces out in a vertical column of lanes on the centre line."""
    lane_top = BOARD_TOP + PIECE_LANE_MARGIN
    lane_bottom = BOARD_BOTTOM - PIECE_LANE_MARGIN
    if count <= 1:
        lanes = np.array([(lane_top + lane_bottom) / 2])
    else:
        lanes = np.linspace(lane_top, lane_bottom, count)

    pieces = []
    for idx, y in enumerate(lanes):
        pieces.append(Piece(
            id=short_id(),
            shape=PIECE_SHAPES[idx % len(PIECE_SHAPES)],
            pos=(BOARD_WIDTH / 2, y),
            radius=PIECE_BASE_RADIUS + (4 if idx % 2 else 0),
            mass=8 + (idx % 3),
        ))
    return pieces


def make_projectile(side, angle):
    direction = np.array([math.cos(angle), math.sin(angle)])
    origin = _vec(gun_position(side)) + direction * MUZZLE_OFFSET
    return Projectile(owner=side, pos=origin, vel=direction * AMMO_SPEED)


def collide_with_bounds(body, restitution):
    """Reflect off the field's top/bottom edges and the board's side edges."""
    x, y = body.pos
    r = body.radius
    if y - r < BOARD_TOP:
        body.pos[1] = BOARD_TOP + r
        body.vel[1] = abs(body.vel[1]) * restitution
    elif y + r > BOARD_BOTTOM:
        body.pos[1] = BOARD_BOTTOM - r
        body.vel[1] = -abs(body.vel[1]) * restitution

    if x - r < 0:
        body.pos[0] = r
        body.vel[0] = abs(body.vel[0]) * restitution
    elif x + r > BOARD_WIDTH:
        body.pos[0] = BOARD_WIDTH - r
        body.vel[0] = -abs(body.vel[0]) * restitution


def integrate_piece(piece, dt):
    if not piece.live:
        return
    piece.pos += piece.vel * dt
    piece.angle += piece.spin * dt
    piece.vel *= PIECE_DAMPING
    piece.spin *= PIECE_SPIN_DAMPING
    collide_with_bounds(piece, PIECE_WALL_RESTITUTION)


def integrate_projectile(shot, dt):
    """Move a pellet and return its x position before the move."""
    prev_x = float(shot.pos[0])
    shot.pos += shot.vel * dt
    shot.ttl -= dt
    shot.vel *= SHOT_DAMPING
    collide_with_bounds(shot, SHOT_WALL_RESTITUTION)
    return prev_x


def resolve_piece_piece(a, b):
    """Separate two overlapping pieces and exchange impulse. Returns True on contact."""
    if not (a.live and b.live):
        return False

    delta = b.pos - a.pos
    dist_sq = float(delta @ delta)
    min_dist = a.radius + b.radius
    if dist_sq == 0 or dist_sq > min_dist * min_dist:
        return False

    dist = math.sqrt(dist_sq)
    normal = delta / dist
    overlap = min_dist - dist
    a.pos -= normal * (overlap / 2)
    b.pos += normal * (overlap / 2)

    rel = b.vel - a.vel
    vel_along_normal = float(rel @ normal)
    if vel_along_normal > 0:
        return True

    inv_mass = 1 / a.mass + 1 / b.mass
    impulse = -(1 + PIECE_RESTITUTION) * vel_along_normal / inv_mass
    a.vel -= normal * (impulse / a.mass)
    b.vel += normal * (impulse / b.mass)

    # Tangential (friction) impulse only turns into spin, bounded by Coulomb.
    tangent = np.array([-normal[1], normal[0]])
    vel_along_tangent = float(rel @ tangent)
    limit = PIECE_FRICTION * impulse
    tangential = clamp(-vel_along_tangent / inv_mass, -limit, limit)
    a.spin -= tangential * a.radius / a.inertia
    b.spin -= tangential * b.radius / b.inertia
    return True


def projectile_hits_piece(shot, piece):
    """Bounce a pellet off a piece, pushing and spinning the piece. Returns True on hit."""
    if not piece.live:
        return False

    delta = piece.pos - shot.pos
    dist_sq = float(delta @ delta)
    min_dist = piece.radius + shot.radius
    if dist_sq > min_dist * min_dist or dist_sq == 0:
        return False

    dist = math.sqrt(dist_sq)
    normal = delta / dist
    rel_vel = float(shot.vel @ normal)
    if rel_vel <= 0:
        return False

    # How far the piece centre sits off the pellet's line of travel.
    speed = float(np.linalg.norm(shot.vel)) or 1.0
    direction = shot.vel / speed
    line_normal = np.array([-direction[1], direction[0]])
    hit_offset = abs(float(delta @ line_normal))
    center_factor = clamp(1 - hit_offset / piece.radius, 0.0, 1.0)

    linear_transfer = SHOT_TRANSFER_FLOOR + center_factor * center_factor * SHOT_TRANSFER_GAIN
    impulse = rel_vel * SHOT_MASS * linear_transfer
    piece.vel += normal * (impulse / piece.mass)

    tangent = np.array([-normal[1], normal[0]])
    tangential = float(shot.vel @ tangent)
    piece.spin += (tangential / piece.mass) * (1 - center_factor) * SHOT_SPIN_GAIN

    shot.vel = (shot.vel - 2 * normal * rel_vel) * SHOT_BOUNCE + piece.vel * SHOT_CARRY
    shot.pos -= normal * SHOT_PUSHBACK
    return True


def score_goal(piece):
    """Freeze a piece whose edge reached a goal line and return the scoring side."""
    if not piece.live:
        return None

    x = float(piece.pos[0])
    if x - piece.radius <= GOAL_LEFT_X:
        piece.scored_by = 1
    elif x + piece.radius >= GOAL_RIGHT_X:
        piece.scored_by = 0
    else:
        return None

    piece.vel[:] = 0.0
    piece.spin = 0.0
    return piece.scored_by


def collect_side(shot, prev_x):
    """Side whose endzone the pellet just crossed into, if any.

    Left endzone belongs to side 0, right endzone to side 1. Uses the
    previous x so a fast pellet cannot skip over the line in one tick.
    """
    x = float(shot.pos[0])
    if prev_x > GOAL_LEFT_X >= x:
        return 0
    if prev_x < GOAL_RIGHT_X <= x:
        return 1
    return None


def ttl_return_side(shot):
    return 0 if float(shot.pos[0]) < BOARD_WIDTH / 2 else 1


def step_world(pieces, projectiles, dt):
    live = [p for p in pieces if p.live]

    for piece in live:
        integrate_piece(piece, dt)

    for i, a in enumerate(live):
        for b in live[i + 1:]:
            resolve_piece_piece(a, b)

    prev_xs = [integrate_projectile(shot, dt) for shot in projectiles]

    # First overlapping piece takes the pellet; order follows the piece list.
    for shot in projectiles:
        for piece in live:
            if projectile_hits_piece(shot, piece):
                break

    outcome = StepOutcome()
    for piece in live:
        side = score_goal(piece)
        if side is not None:
            outcome.scored.append(side)

    for shot, prev_x in zip(projectiles, prev_xs):
        side = collect_side(shot, prev_x)
        if side is not None:
            outcome.collected.append(side)
        elif shot.ttl <= 0:
            outcome.returned.append(ttl_return_side(shot))
        else:
            outcome.projectiles.append(shot)
    return outcome
