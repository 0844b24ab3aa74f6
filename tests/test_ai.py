"""
Unit tests for the heuristic AI controller.
"""

import random

import pytest

from crossfire_ai import DIFFICULTY, AIController
from crossfire_physics import Piece
from crossfire_player import PlayerState
from crossfire_protocol import *

T0 = 1000.0
DT = 0.05


def piece_at(x, y):
    return Piece(id=f"{x}-{y}", shape="circle", pos=(x, y), radius=24, mass=8)


def ai_player(side=0, difficulty="medium"):
    return PlayerState(side, AIController(difficulty, rng=random.Random(7)))


class TestTargeting:
    """Tests for AIController.pick_target."""

    def test_prefers_piece_near_enemy_goal(self):
        """Each side goes for the piece closest to the goal it scores on."""
        near_left = piece_at(300, 350)
        near_right = piece_at(900, 350)
        ai = AIController(rng=random.Random(7))

        assert ai.pick_target(0, [near_left, near_right]) is near_right
        assert ai.pick_target(1, [near_left, near_right]) is near_left

    def test_centre_line_breaks_ties(self):
        central = piece_at(900, 350)
        edge = piece_at(900, 600)
        ai = AIController(rng=random.Random(7))

        assert ai.pick_target(0, [edge, central]) is central

    def test_scored_pieces_are_ignored(self):
        scored = piece_at(1000, 350)
        scored.scored_by = 0
        live = piece_at(400, 350)
        ai = AIController(rng=random.Random(7))

        assert ai.pick_target(0, [scored, live]) is live
        assert ai.pick_target(0, [scored]) is None


class TestAIStep:
    """Tests for one AI tick."""

    def test_idle_without_targets(self):
        player = ai_player()

        assert player.controller.step(player, [], DT, T0) is None
        assert player.gun_angle == 0.0

    def test_turn_is_rate_limited(self):
        player = ai_player()
        profile = DIFFICULTY["medium"]

        player.controller.step(player, [piece_at(600, 100)], DT, T0)

        assert player.gun_angle < 0
        assert abs(player.gun_angle) <= profile.aim_speed * DT + 1e-9

    def test_fires_when_aligned(self):
        """A piece dead ahead is within reach of one turn, so the AI shoots at once."""
        player = ai_player()

        shot = player.controller.step(player, [piece_at(600, 350)], DT, T0)

        assert shot is not None
        assert shot.owner == 0
        assert player.ammo.mag == MAG_CAPACITY - 1

    def test_respects_shoot_delay(self):
        player = ai_player()
        target = [piece_at(600, 350)]
        player.controller.step(player, target, DT, T0)

        assert player.controller.step(player, target, DT, T0 + 0.05) is None

    def test_reloads_at_threshold(self):
        player = ai_player()
        player.ammo.mag = DIFFICULTY["medium"].reload_at

        shot = player.controller.step(player, [piece_at(600, 350)], DT, T0)

        assert shot is None
        assert player.ammo.reloading

    def test_dry_gun_stays_quiet(self):
        player = ai_player()
        player.ammo.mag = 0
        player.ammo.bin = 0

        assert player.controller.step(player, [piece_at(600, 350)], DT, T0) is None
        assert not player.ammo.reloading

    def test_aim_stays_in_arc(self):
        """Targets outside the arc pull the gun only as far as the arc edge."""
        player = ai_player(side=1)
        lo, hi = aim_bounds(1)
        target = [piece_at(BOARD_WIDTH - 80, BOARD_BOTTOM - 30)]

        for i in range(60):
            player.controller.step(player, target, DT, T0 + i)

        assert lo <= player.gun_angle <= hi


class TestProfiles:
    def test_harder_is_faster_and_steadier(self):
        easy, medium, hard = (DIFFICULTY[d] for d in DIFFICULTIES)

        assert easy.aim_speed < medium.aim_speed < hard.aim_speed
        assert easy.shoot_delay > medium.shoot_delay > hard.shoot_delay
        assert easy.jitter > medium.jitter > hard.jitter

    def test_unknown_difficulty(self):
        with pytest.raises(KeyError):
            AIController("impossible")
