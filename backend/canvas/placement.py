"""Collision-avoiding placement of new canvas nodes."""

from collections.abc import Iterable

from canvas.graph_store import GraphStore
from canvas.types import NODE_BOX, Node, NodeKind, Position

MARGIN = 20.0
RING_STEP = 30.0
MAX_RINGS = 9
FALLBACK_OFFSET = (200.0, 100.0)

# Axis directions first, then diagonals
_DIRECTIONS = (
    (1, 0), (-1, 0), (0, 1), (0, -1),
    (1, 1), (-1, -1), (1, -1), (-1, 1),
)


def overlaps(position: Position, kind: NodeKind, other: Node) -> bool:
    """Whether a node of ``kind`` at ``position`` comes within the margin of ``other``."""
    width, height = NODE_BOX[kind]
    other_width, other_height = NODE_BOX[other.kind]
    ox, oy = other.position.x, other.position.y
    return (
        position.x < ox + other_width + MARGIN
        and position.x + width + MARGIN > ox
        and position.y < oy + other_height + MARGIN
        and position.y + height + MARGIN > oy
    )


class PlacementEngine:
    """Finds a free spot for a new node near where the user dropped it.

    Args:
        store: Graph whose current nodes are treated as obstacles.
    """

    def __init__(self, store: GraphStore) -> None:
        self._store = store

    def place(
        self,
        desired: Position,
        kind: NodeKind,
        ignore: Iterable[str] = (),
    ) -> Position:
        """Return ``desired`` if it is free, else the nearest free ring candidate.

        Rings are probed at 30px steps out to ring 9. If every candidate is
        taken the result is ``desired`` shifted by (200, 100), which may
        still overlap.
        """
        skip = set(ignore)
        obstacles = [n for n in self._store.nodes if n.id not in skip]

        def is_free(candidate: Position) -> bool:
            return not any(overlaps(candidate, kind, n) for n in obstacles)

        if is_free(desired):
            return desired

        for distance in range(1, MAX_RINGS + 1):
            step = distance * RING_STEP
            for dx, dy in _DIRECTIONS:
                candidate = desired.offset(dx * step, dy * step)
                if is_free(candidate):
                    return candidate

        return desired.offset(*FALLBACK_OFFSET)
