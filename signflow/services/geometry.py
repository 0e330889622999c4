"""Field placement in page-relative coordinates.

Positions are stored as fractions of the page (0..1 on both axes) so a field
placed on an 800px-wide render lands in the same spot on any other render
size. Callers speak in page units (the size the rendering collaborator reports)
and convert at the edge with ``to_placement`` / ``to_units``.
"""
from __future__ import annotations

from dataclasses import dataclass, replace

from signflow.services.exceptions import InvalidGeometry

DEFAULT_FIELD_WIDTH = 200.0
DEFAULT_FIELD_HEIGHT = 60.0

# Canonical signature mark box (typed marks are rendered at exactly this size)
CANONICAL_MARK_WIDTH = 400
CANONICAL_MARK_HEIGHT = 100

# Float slack when checking fractional bounds after unit conversion
_EPSILON = 1e-9


@dataclass(frozen=True)
class PageSize:
    width: float
    height: float


@dataclass(frozen=True)
class Placement:
    """Fractional position and size of a field on one page (1-based)."""
    page: int
    x: float
    y: float
    width: float
    height: float

    def within_page(self) -> bool:
        return (
            self.x >= -_EPSILON
            and self.y >= -_EPSILON
            and self.x + self.width <= 1 + _EPSILON
            and self.y + self.height <= 1 + _EPSILON
        )

    def moved_to(self, x: float, y: float) -> "Placement":
        return replace(self, x=x, y=y)


def validate_page_size(page: PageSize) -> None:
    if page.width <= 0 or page.height <= 0:
        raise InvalidGeometry(f"Page size must be positive, got {page.width}x{page.height}")


def to_placement(
    page_size: PageSize,
    page: int,
    x: float,
    y: float,
    width: float = DEFAULT_FIELD_WIDTH,
    height: float = DEFAULT_FIELD_HEIGHT,
) -> Placement:
    """Convert page units to a fractional placement without bounds checking."""
    validate_page_size(page_size)
    return Placement(
        page=page,
        x=x / page_size.width,
        y=y / page_size.height,
        width=width / page_size.width,
        height=height / page_size.height,
    )


def to_units(page_size: PageSize, placement: Placement) -> dict[str, float]:
    """Inverse of to_placement: x, y, width, height in page units."""
    return {
        "x": placement.x * page_size.width,
        "y": placement.y * page_size.height,
        "width": placement.width * page_size.width,
        "height": placement.height * page_size.height,
    }


def check_placement(placement: Placement, page_count: int) -> Placement:
    """Reject placements on a missing page or extending outside [0, 1] x [0, 1]."""
    if placement.page < 1 or placement.page > page_count:
        raise InvalidGeometry(
            f"Page {placement.page} is outside the document (1..{page_count})",
            page=placement.page,
        )
    if placement.width <= 0 or placement.height <= 0:
        raise InvalidGeometry("Field size must be positive")
    if not placement.within_page():
        raise InvalidGeometry(
            "Field would extend outside the page bounds",
            x=placement.x,
            y=placement.y,
        )
    return placement


def fit_within(width: int, height: int, max_width: int = CANONICAL_MARK_WIDTH, max_height: int = CANONICAL_MARK_HEIGHT) -> tuple[int, int]:
    """Largest size with the same aspect ratio that fits the canonical mark box."""
    if width <= max_width and height <= max_height:
        return width, height
    scale = min(max_width / width, max_height / height)
    return max(1, int(width * scale)), max(1, int(height * scale))
