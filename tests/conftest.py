from __future__ import annotations

import time
from io import BytesIO
from typing import Optional

import pytest
from PIL import Image, ImageDraw

from printkit.config import Settings
from printkit.utils import CropRect


def encode(image: Image.Image, format: str = "JPEG", **params) -> bytes:
    with BytesIO() as output:
        image.save(output, format=format, **params)
        return output.getvalue()


def textured_image(width: int, height: int) -> Image.Image:
    """Gradient background with a few shapes so crops have content."""
    image = Image.new("RGB", (width, height))
    draw = ImageDraw.Draw(image)
    for x in range(0, width, max(1, width // 64)):
        shade = int(255 * x / max(1, width - 1))
        draw.line([(x, 0), (x, height)], fill=(shade, 80, 255 - shade), width=max(1, width // 64))
    draw.ellipse([width // 4, height // 4, width // 2, height // 2], fill=(230, 180, 140))
    draw.rectangle([width // 2, height // 2, width * 3 // 4, height * 3 // 4], fill=(20, 20, 20))
    return image


class NoCropDetector:
    def find_crop(self, image, width, height) -> Optional[CropRect]:
        return None


class RaisingDetector:
    def find_crop(self, image, width, height):
        raise RuntimeError("model unavailable")


class SlowDetector:
    def __init__(self, delay: float = 1.0):
        self.delay = delay

    def find_crop(self, image, width, height):
        time.sleep(self.delay)
        return CropRect(0, 0, image.width, image.height)


class FixedDetector:
    def __init__(self, rect: CropRect):
        self.rect = rect
        self.calls = 0

    def find_crop(self, image, width, height):
        self.calls += 1
        return self.rect


@pytest.fixture
def small_settings() -> Settings:
    """Low DPI keeps full catalogue runs fast."""
    return Settings(dpi=20, icc_profile_path=None, crop_workers=2, queue_size=2)


@pytest.fixture
def square_jpeg() -> bytes:
    return encode(textured_image(1000, 1000), quality=90)
