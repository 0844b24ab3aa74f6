from dataclasses import dataclass

from crossfire_protocol import *


@dataclass
class AmmoState:
    """Magazine and reserve bin for one gun.

    Rounds only ever move between the magazine, the bin and pellets in
    flight; nothing here creates or destroys ammo except ``reset``.
    """
    mag: int = START_MAG
    bin: int = START_BIN_EACH
    reloading: bool = False
    reload_until: float = 0.0
    last_shot_at: float = 0.0

    @property
    def held(self):
        return self.mag + self.bin

    def reset(self):
        self.mag = START_MAG
        self.bin = START_BIN_EACH
        self.reloading = False
        self.reload_until = 0.0
        self.last_shot_at = 0.0

    def can_reload(self):
        return not self.reloading and self.mag < MAG_CAPACITY and self.bin > 0

    def request_reload(self, now):
        if not self.can_reload():
            return False
        self.reloading = True
        self.reload_until = now + RELOAD_SECONDS
        return True

    def finish_reload(self, now):
        """Top up the magazine once the reload deadline has passed."""
        if not self.reloading or now < self.reload_until:
            return False
        moved = min(MAG_CAPACITY - self.mag, self.bin)
        if moved > 0:
            self.bin -= moved
            self.mag += moved
        self.reloading = False
        return True

    def reload_remaining(self, now):
        if not self.reloading:
            return 0.0
        return max(0.0, self.reload_until - now)

    def can_fire(self, now):
        if self.mag <= 0 or self.reloading:
            return False
        return now - self.last_shot_at >= SHOT_INTERVAL

    def take_round(self, now):
        if not self.can_fire(now):
            return False
        self.mag -= 1
        self.last_shot_at = now
        return True

    def stow(self, count=1):
        self.bin += count
