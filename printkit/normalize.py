"""
Bring an uploaded image into the canonical form every later stage expects:
visually upright, sRGB, opaque RGB.
"""
import logging
from dataclasses import dataclass
from functools import lru_cache
from io import BytesIO
from pathlib import Path
from typing import Optional, Union

from PIL import Image, ImageCms, ImageOps

from .errors import UnsupportedFormatError
from .utils import decode_image, image_has_alpha, read_orientation

logger = logging.getLogger("print-kit.normalize")

WHITE = (255, 255, 255)


@dataclass
class NormalizedImage:
    image: Image.Image
    original_width: int
    original_height: int
    orientation: int
    had_alpha: bool
    icc_profile: Optional[bytes]

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height


def _srgb_profile() -> ImageCms.ImageCmsProfile:
    return ImageCms.ImageCmsProfile(ImageCms.createProfile("sRGB"))


@lru_cache(maxsize=1)
def builtin_srgb_profile() -> bytes:
    """Serialized sRGB profile generated by LittleCMS."""
    return _srgb_profile().tobytes()


@lru_cache(maxsize=4)
def _read_profile(path: str) -> bytes:
    try:
        return Path(path).read_bytes()
    except OSError as exc:
        logger.warning(
            "Could not load ICC profile %s, embedding built-in sRGB: %s",
            path, exc
        )
        return builtin_srgb_profile()


def load_icc_profile(path: Union[str, Path, None]) -> Optional[bytes]:
    """
    sRGB ICC profile bytes to embed.

    A missing asset falls back to the built-in sRGB profile; no path at
    all disables embedding.
    """
    if not path:
        return None
    return _read_profile(str(path))


def convert_to_srgb(image: Image.Image) -> Image.Image:
    """
    Convert to sRGB, honoring an embedded source profile.

    Alpha survives the conversion (RGBA in, RGBA out) so it can be
    flattened afterwards.
    """
    keep_alpha = image_has_alpha(image)
    target_mode = "RGBA" if keep_alpha else "RGB"
    embedded = image.info.get("icc_profile")

    if embedded:
        try:
            source_profile = ImageCms.ImageCmsProfile(BytesIO(embedded))
            if image.mode not in ("RGB", "RGBA", "CMYK", "L"):
                image = image.convert(target_mode)
            if image.mode == "L":
                image = image.convert("RGB")
            output_mode = "RGBA" if image.mode == "RGBA" else "RGB"
            converted = ImageCms.profileToProfile(
                image, source_profile, _srgb_profile(), outputMode=output_mode
            )
            if converted is not None:
                converted.info.pop("icc_profile", None)
                return converted
        except (ImageCms.PyCMSError, OSError, ValueError) as exc:
            logger.warning(
                "Embedded ICC transform failed, converting without it: %s", exc
            )

    if image.mode == target_mode:
        return image
    try:
        if image.mode == "P" and keep_alpha:
            image = image.convert("RGBA")
        return image.convert(target_mode)
    except (OSError, ValueError) as exc:
        raise UnsupportedFormatError(
            f"Cannot convert {image.mode} image to sRGB: {exc}"
        ) from exc


def flatten_alpha(
    image: Image.Image,
    background: tuple[int, int, int] = WHITE
) -> Image.Image:
    """Composite onto an opaque background; JPEG cannot carry alpha."""
    if not image_has_alpha(image):
        return image if image.mode == "RGB" else image.convert("RGB")
    rgba = image.convert("RGBA")
    flat = Image.new("RGB", rgba.size, background)
    flat.paste(rgba, mask=rgba.split()[-1])
    return flat


def normalize_image(
    data: bytes,
    icc_profile_path: Union[str, Path, None] = None
) -> NormalizedImage:
    """
    Decode, auto-rotate, convert to sRGB and flatten transparency.

    Raises:
        DecodeError: bytes are not a supported image container.
        UnsupportedFormatError: the image cannot be converted to sRGB.
    """
    source = decode_image(data)
    original_width, original_height = source.size
    orientation = read_orientation(source)
    had_alpha = image_has_alpha(source)
    logger.info(
        f"Decoded {source.format} {original_width}x{original_height}px "
        f"mode={source.mode} orientation={orientation} alpha={had_alpha}"
    )

    image = source
    if orientation != 1:
        try:
            image = ImageOps.exif_transpose(source)
        except (OSError, ValueError) as exc:
            raise UnsupportedFormatError(
                f"Cannot apply EXIF orientation {orientation}: {exc}"
            ) from exc

    image = convert_to_srgb(image)
    image = flatten_alpha(image)

    return NormalizedImage(
        image=image,
        original_width=original_width,
        original_height=original_height,
        orientation=orientation,
        had_alpha=had_alpha,
        icc_profile=load_icc_profile(icc_profile_path),
    )
