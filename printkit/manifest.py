from datetime import datetime, timezone
from typing import Mapping, Optional, Sequence

from .sizes import OFF_RATIO_SIZES, format_pixel_dimensions, master_entry

TITLE = "Etsy Print Sizer - Generated Images"


def _off_ratio_notes() -> list[str]:
    notes = []
    for ratio, label in sorted(OFF_RATIO_SIZES):
        w, h = label.removesuffix("cm").split("x")
        notes.append(f"- {w}×{h} cm is slightly off true {ratio.replace('x', ':')} ratio")
    return notes


def generate_manifest(
    basename: str,
    aspect_ratios: Sequence[str],
    every_size: bool,
    original_dimensions: tuple[int, int],
    master_dimensions: Mapping[str, tuple[int, int]],
    dpi: int = 300,
    quality: int = 95,
    upscaled: Optional[bool] = None,
    upscale_stages: int = 1,
    generated_at: Optional[datetime] = None,
) -> str:
    """Human-readable summary written as the archive's last entry."""
    generated_at = generated_at or datetime.now(timezone.utc)
    width, height = original_dimensions

    lines = [
        TITLE,
        f"Source file: {basename}",
        f"Original dimensions: {width}x{height}px",
        f"Generated at: {generated_at.isoformat()}",
        f"DPI: {dpi}",
    ]
    if upscaled is not None:
        if upscaled:
            lines.append(
                f"Upscaling: Lanczos upscale in {upscale_stages} "
                f"stage{'s' if upscale_stages > 1 else ''}"
            )
        else:
            lines.append("Upscaling: not needed (source resized only)")

    lines.append("")
    lines.append("Included aspect ratios:")
    for ratio in aspect_ratios:
        label = master_entry(ratio).label
        pixels = format_pixel_dimensions(master_dimensions[ratio])
        lines.append(f"  - {ratio}: {label} ({pixels})")

    lines.append("")
    if every_size:
        lines.append("Every size mode: ENABLED")
        lines.append("All sub-sizes for each aspect ratio included")
    else:
        lines.append("Every size mode: DISABLED")
        lines.append("Only master sizes included")

    lines.append("")
    lines.append("Processing details:")
    lines.append("- Images converted to sRGB color space")
    lines.append("- EXIF orientation automatically corrected")
    lines.append("- Alpha channels flattened to white background")
    lines.append("- Lanczos upscaling, staged through 2x for large factors")
    lines.append(f"- JPEG quality: {quality}% with 4:4:4 chroma subsampling")
    lines.append("- Smart cropping with salient region detection, "
                 "center crop fallback")
    lines.append(f"- {dpi} DPI metadata applied to all images")
    lines.append("- sRGB color profile embedded")

    lines.append("")
    lines.append("Notes:")
    lines.extend(_off_ratio_notes())
    lines.append("- Print labs may trim a few mm if needed for exact sizes")

    return "\n".join(lines)
