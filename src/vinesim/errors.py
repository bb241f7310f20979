"""Exception types raised by the vine simulation."""

from __future__ import annotations


class VineSimError(Exception):
    """Base class for simulation errors."""


class SurfaceError(VineSimError):
    """The anchoring surface cannot be queried (raised once, at startup)."""


class NonFiniteStateError(VineSimError):
    """A particle position or orientation became NaN or infinite."""

    def __init__(self, plant_id: str, index: int, field: str):
        super().__init__(f"plant {plant_id}: particle {index} has non-finite {field}")
        self.plant_id = plant_id
        self.index = index
        self.field = field
