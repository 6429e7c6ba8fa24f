import logging
from dataclasses import dataclass
from io import BytesIO
from typing import Optional

from PIL import Image, UnidentifiedImageError

from .errors import DecodeError, EncodeError

logger = logging.getLogger("print-kit.engine")

LANCZOS = Image.Resampling.LANCZOS
EXIF_ORIENTATION = 0x0112
ALPHA_MODES = ("RGBA", "LA", "PA", "RGBa", "La")


@dataclass(frozen=True)
class CropRect:
    x: int
    y: int
    width: int
    height: int

    @property
    def box(self) -> tuple[int, int, int, int]:
        """Pillow crop box (left, upper, right, lower)."""
        return self.x, self.y, self.x + self.width, self.y + self.height

    def fits(self, width: int, height: int) -> bool:
        return (
            self.width > 0 and self.height > 0
            and self.x >= 0 and self.y >= 0
            and self.x + self.width <= width
            and self.y + self.height <= height
        )


@dataclass(frozen=True)
class ImageMetadata:
    width: int
    height: int
    orientation: int
    has_alpha: bool
    format: Optional[str]


def _open(data: bytes) -> Image.Image:
    if not data:
        raise DecodeError("Empty image data")
    try:
        image = Image.open(BytesIO(data))
        image.load()
    except (UnidentifiedImageError, Image.DecompressionBombError) as exc:
        raise DecodeError(f"Unsupported image data: {exc}") from exc
    except (OSError, ValueError, SyntaxError) as exc:
        # truncated or corrupt payloads
        raise DecodeError(f"Could not decode image: {exc}") from exc
    return image


def decode_image(data: bytes) -> Image.Image:
    """Decode raw bytes into a Pillow image."""
    return _open(data)


def image_has_alpha(image: Image.Image) -> bool:
    return image.mode in ALPHA_MODES or "transparency" in image.info


def read_orientation(image: Image.Image) -> int:
    try:
        return int(image.getexif().get(EXIF_ORIENTATION, 1) or 1)
    except (ValueError, TypeError, SyntaxError):
        return 1


def read_metadata(data: bytes) -> ImageMetadata:
    """Stored dimensions, EXIF orientation and alpha presence of raw bytes."""
    image = _open(data)
    return ImageMetadata(
        width=image.width,
        height=image.height,
        orientation=read_orientation(image),
        has_alpha=image_has_alpha(image),
        format=image.format,
    )


def read_image_dimensions_and_ratio(
    image: Image.Image
) -> tuple[int, int, float]:
    """Read image dimensions and aspect ratio."""
    width, height = image.size
    aspect_ratio = width / height
    return width, height, aspect_ratio


def determine_scaling_factor(
    desired_x_px: int,
    desired_y_px: int,
    actual_x_px: int,
    actual_y_px: int
) -> float:
    """Determine scaling factor based on desired and actual dimensions."""
    scale_x = desired_x_px / actual_x_px
    scale_y = desired_y_px / actual_y_px
    return max(scale_x, scale_y)


def resample(
    image: Image.Image,
    width: int,
    height: int,
    kernel: Image.Resampling = LANCZOS
) -> Image.Image:
    """Resample to exactly width x height (fill, no cropping)."""
    if width <= 0 or height <= 0:
        raise EncodeError(f"Invalid resample target {width}x{height}")
    if image.size == (width, height):
        return image.copy()
    try:
        return image.resize((width, height), kernel)
    except (OSError, ValueError, MemoryError) as exc:
        raise EncodeError(
            f"Resample {image.width}x{image.height} -> {width}x{height} "
            f"failed: {exc}"
        ) from exc


def extract(image: Image.Image, rect: CropRect) -> Image.Image:
    """Copy out a rectangle of the image."""
    if not rect.fits(image.width, image.height):
        raise EncodeError(
            f"Crop {rect} outside {image.width}x{image.height} image"
        )
    try:
        return image.crop(rect.box)
    except (OSError, ValueError, MemoryError) as exc:
        raise EncodeError(f"Extract {rect} failed: {exc}") from exc


def encode_jpeg(
    image: Image.Image,
    quality: int = 95,
    dpi: int = 300,
    icc_profile: Optional[bytes] = None
) -> bytes:
    """
    Encode an RGB image as JPEG with 4:4:4 chroma and DPI metadata.

    Args:
        image: Image in RGB mode.
        quality: JPEG quality (1-100).
        dpi: Density written to the JFIF header.
        icc_profile: Profile bytes to embed, if any.

    Returns:
        Encoded JPEG bytes.
    """
    params = {
        "format": "JPEG",
        "quality": quality,
        "subsampling": 0,  # 4:4:4
        "dpi": (dpi, dpi),
        "optimize": True,
        "progressive": True,
    }
    if icc_profile:
        params["icc_profile"] = icc_profile
    if image.mode != "RGB":
        image = image.convert("RGB")
    try:
        with BytesIO() as output:
            image.save(output, **params)
            return output.getvalue()
    except (OSError, ValueError, MemoryError) as exc:
        raise EncodeError(f"JPEG encode failed: {exc}") from exc
