import math
from dataclasses import dataclass
from types import MappingProxyType
from typing import Iterable


DPI = 300

# Physical unit -> inches divisor
UNIT_FACTORS = MappingProxyType({
    "in": 1.0,
    "cm": 2.54,
    "mm": 25.4,
})

ASPECT_RATIOS = MappingProxyType({
    "2x3": 2 / 3,
    "3x4": 3 / 4,
    "4x5": 4 / 5,
    "11x14": 11 / 14,
    "ISO": 1 / math.sqrt(2),  # A-series
    "5x7": 5 / 7,
})

BASE_RATIOS = ("2x3", "3x4", "4x5", "11x14", "ISO")

# Master sizes in inches at 300 DPI
MASTER_SIZES = MappingProxyType({
    "2x3": (24, 36),
    "3x4": (18, 24),
    "4x5": (20, 25),
    "11x14": (22, 28),
    "ISO": (23.39, 33.11),
    "5x7": (5, 7),
})

INCH_SIZES = MappingProxyType({
    "2x3": (
        ("4x6", (4, 6)),
        ("6x9", (6, 9)),
        ("8x12", (8, 12)),
        ("10x15", (10, 15)),
        ("12x18", (12, 18)),
        ("16x24", (16, 24)),
        ("20x30", (20, 30)),
        ("24x36", (24, 36)),
    ),
    "3x4": (
        ("6x8", (6, 8)),
        ("9x12", (9, 12)),
        ("12x16", (12, 16)),
        ("15x20", (15, 20)),
        ("18x24", (18, 24)),
    ),
    "4x5": (
        ("4x5", (4, 5)),
        ("8x10", (8, 10)),
        ("12x15", (12, 15)),
        ("16x20", (16, 20)),
        ("20x25", (20, 25)),
    ),
    "11x14": (
        ("11x14", (11, 14)),
        ("22x28", (22, 28)),
    ),
    "ISO": (
        ("A5", (5.83, 8.27)),
        ("A4", (8.27, 11.69)),
        ("A3", (11.69, 16.54)),
        ("A2", (16.54, 23.39)),
        ("A1", (23.39, 33.11)),
    ),
    "5x7": (
        ("5x7", (5, 7)),
    ),
})

CM_SIZES = MappingProxyType({
    "2x3": (
        ("10x15", (10, 15)),
        ("20x30", (20, 30)),
        ("30x45", (30, 45)),
        ("40x60", (40, 60)),
        ("50x75", (50, 75)),
        ("60x90", (60, 90)),
    ),
    "3x4": (
        ("15x20", (15, 20)),
        ("22x30", (22, 30)),  # slightly off true 3:4
        ("30x40", (30, 40)),
        ("38x50", (38, 50)),
        ("45x60", (45, 60)),
    ),
    "4x5": (
        ("10x12", (10, 12)),  # slightly off true 4:5
        ("20x25", (20, 25)),
        ("28x35", (28, 35)),
        ("30x38", (30, 38)),
        ("40x50", (40, 50)),
    ),
    # No standard cm sizes; ISO sizes are already listed by name
    "11x14": (),
    "ISO": (),
    "5x7": (),
})

# Sizes the print trade sells under a ratio they do not match exactly.
# Kept as-is; listed so tests and the manifest can call them out.
OFF_RATIO_SIZES = frozenset({
    ("3x4", "22x30cm"),
    ("4x5", "10x12cm"),
})

RATIO_TOLERANCE = 0.02


@dataclass(frozen=True)
class SizeEntry:
    ratio: str
    label: str
    width: float
    height: float
    unit: str
    kind: str

    @property
    def dimensions(self) -> tuple[float, float]:
        return self.width, self.height

    def pixel_size(self, dpi: int = DPI) -> tuple[int, int]:
        return (
            to_pixels(self.width, self.unit, dpi),
            to_pixels(self.height, self.unit, dpi),
        )


def round_half_away(value: float) -> int:
    """Round to the nearest integer, halves away from zero."""
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def to_pixels(value: float, unit: str = "in", dpi: int = DPI) -> int:
    """Convert a physical length to whole pixels at the given DPI."""
    try:
        factor = UNIT_FACTORS[unit]
    except KeyError:
        raise ValueError(f"Unknown unit: {unit}") from None
    return round_half_away(value / factor * dpi)


def inches_to_px(inches: float, dpi: int = DPI) -> int:
    return to_pixels(inches, "in", dpi)


def cm_to_px(cm: float, dpi: int = DPI) -> int:
    return to_pixels(cm, "cm", dpi)


def mm_to_px(mm: float, dpi: int = DPI) -> int:
    return to_pixels(mm, "mm", dpi)


def _format_number(value: float) -> str:
    return f"{value:g}"


def plain_label(width: float, height: float) -> str:
    return f"{_format_number(width)}x{_format_number(height)}"


def format_size_label(width: float, height: float, unit: str = "in") -> str:
    return f"{plain_label(width, height)}{unit}"


def format_pixel_dimensions(dimensions: tuple[int, int]) -> str:
    w, h = dimensions
    return f"{w}x{h}px"


def _check_ratio(ratio: str) -> None:
    if ratio not in ASPECT_RATIOS:
        raise ValueError(f"Unknown aspect ratio: {ratio}")


def active_ratios(include_5x7: bool = False) -> tuple[str, ...]:
    """Ratios processed for a request."""
    if include_5x7:
        return BASE_RATIOS + ("5x7",)
    return BASE_RATIOS


def master_entry(ratio: str) -> SizeEntry:
    _check_ratio(ratio)
    w, h = MASTER_SIZES[ratio]
    return SizeEntry(
        ratio=ratio,
        label=format_size_label(w, h, "in"),
        width=w,
        height=h,
        unit="in",
        kind="master",
    )


def master_pixel_size(ratio: str, dpi: int = DPI) -> tuple[int, int]:
    """Pixel dimensions of a ratio's master size."""
    return master_entry(ratio).pixel_size(dpi)


def largest_master_canvas(
    ratios: Iterable[str],
    dpi: int = DPI
) -> tuple[int, int]:
    """
    Pixel dimensions of the master with the greatest pixel area.

    Area decides, not width or height on their own; the first ratio wins
    on a tie.
    """
    best = None
    best_area = -1
    for ratio in ratios:
        w, h = master_pixel_size(ratio, dpi)
        if w * h > best_area:
            best_area = w * h
            best = (w, h)
    if best is None:
        raise ValueError("At least one aspect ratio is required")
    return best


def _sub_entry(ratio: str, label: str, dims: tuple, unit: str) -> SizeEntry:
    w, h = dims
    # Named sizes (A4 ...) stay as they are, numeric ones carry their unit
    display = f"{label}{unit}" if label[0].isdigit() else label
    return SizeEntry(
        ratio=ratio,
        label=display,
        width=w,
        height=h,
        unit=unit,
        kind="sub",
    )


def size_ladder(
    ratio: str,
    include_sub_sizes: bool = False
) -> list[SizeEntry]:
    """
    Ordered sizes for a ratio: the master first, then the inch and cm
    sub sizes when requested. A sub size whose label repeats the master's
    dimensions is dropped, whatever its unit.
    """
    master = master_entry(ratio)
    ladder = [master]
    if not include_sub_sizes:
        return ladder

    master_plain = plain_label(master.width, master.height)
    for unit, table in (("in", INCH_SIZES), ("cm", CM_SIZES)):
        for label, dims in table[ratio]:
            if label == master_plain:
                continue
            ladder.append(_sub_entry(ratio, label, dims, unit))
    return ladder


def ratio_deviation(width: int, height: int, ratio: str) -> float:
    """Relative difference between width/height and the nominal ratio."""
    _check_ratio(ratio)
    nominal = ASPECT_RATIOS[ratio]
    return abs(width / height - nominal) / nominal


def is_off_ratio(entry: SizeEntry) -> bool:
    return (entry.ratio, entry.label) in OFF_RATIO_SIZES


def catalogue(
    include_every_size: bool = True,
    include_5x7: bool = True,
    dpi: int = DPI
) -> list[dict]:
    """Serializable listing of the catalogue for the sizes endpoint."""
    listing = []
    for ratio in active_ratios(include_5x7):
        master = master_entry(ratio)
        mw, mh = master.pixel_size(dpi)
        listing.append({
            "ratio": ratio,
            "master": master.label,
            "master_pixels": format_pixel_dimensions((mw, mh)),
            "sizes": [
                {
                    "label": entry.label,
                    "unit": entry.unit,
                    "kind": entry.kind,
                    "width": entry.width,
                    "height": entry.height,
                    "pixels": format_pixel_dimensions(entry.pixel_size(dpi)),
                    "off_ratio": is_off_ratio(entry),
                }
                for entry in size_ladder(ratio, include_every_size)
            ],
        })
    return listing
