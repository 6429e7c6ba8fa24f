import logging
import threading
from dataclasses import dataclass
from typing import Optional

from PIL import Image

from .errors import PipelineCancelled
from .utils import (
    LANCZOS,
    determine_scaling_factor,
    read_image_dimensions_and_ratio,
    resample,
)

logger = logging.getLogger("print-kit.upscale")

# Above this factor a single Lanczos pass visibly softens; go through 2x first
STAGED_UPSCALE_THRESHOLD = 2.0


@dataclass
class UpscaleResult:
    image: Image.Image
    width: int
    height: int
    upscaled: bool
    stages: int
    scale_factor: float


def cover_dimensions(
    src_w: int,
    src_h: int,
    target_w: int,
    target_h: int
) -> tuple[int, int, float]:
    """
    Smallest aspect-preserving size covering target_w x target_h.

    The limiting dimension lands exactly on the target; the other is
    rounded and never drops below its target.
    """
    factor = determine_scaling_factor(target_w, target_h, src_w, src_h)
    if target_w / src_w >= target_h / src_h:
        width = target_w
        height = max(target_h, round(src_h * factor))
    else:
        height = target_h
        width = max(target_w, round(src_w * factor))
    return width, height, factor


def _check_cancel(cancel_event: Optional[threading.Event]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise PipelineCancelled("Upscale cancelled")


def upscale_with_LANCZOS(
    image: Image.Image,
    scaling_factor: float
) -> Image.Image:
    """Scale both dimensions by scaling_factor using LANCZOS."""
    new_width = round(image.width * scaling_factor)
    new_height = round(image.height * scaling_factor)
    return resample(image, new_width, new_height, LANCZOS)


def upscale_to_canvas(
    image: Image.Image,
    target_width: int,
    target_height: int,
    cancel_event: Optional[threading.Event] = None
) -> UpscaleResult:
    """
    Resample once so the image covers the target canvas.

    Sources already at least as large as the target in both dimensions get
    a single downscale. Smaller sources are upscaled with LANCZOS, in two
    passes (2x, then final) when the factor exceeds 2.
    """
    src_w, src_h, src_ratio = read_image_dimensions_and_ratio(image)
    width, height, factor = cover_dimensions(
        src_w, src_h, target_width, target_height
    )
    logger.info(
        f"Upscale plan: {src_w}x{src_h} (ratio {src_ratio:.3f}) -> "
        f"{width}x{height} "
        f"(target {target_width}x{target_height}, factor {factor:.3f})"
    )

    if src_w >= target_width and src_h >= target_height:
        _check_cancel(cancel_event)
        resized = resample(image, width, height, LANCZOS)
        logger.info(f"Source large enough, resized to {width}x{height}")
        return UpscaleResult(
            image=resized,
            width=width,
            height=height,
            upscaled=False,
            stages=1,
            scale_factor=factor,
        )

    current = image
    stages = 1
    if factor > STAGED_UPSCALE_THRESHOLD:
        _check_cancel(cancel_event)
        current = upscale_with_LANCZOS(image, 2.0)
        stages = 2
        logger.info(
            f"Stage 1/2: intermediate {current.width}x{current.height}"
        )

    _check_cancel(cancel_event)
    final = resample(current, width, height, LANCZOS)
    logger.info(f"Stage {stages}/{stages}: upscaled to {width}x{height}")
    return UpscaleResult(
        image=final,
        width=width,
        height=height,
        upscaled=True,
        stages=stages,
        scale_factor=factor,
    )
