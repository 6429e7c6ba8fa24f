import threading
from io import BytesIO

import pytest
from PIL import Image, JpegImagePlugin

from printkit.crop import CENTER, CONTENT, Cropper, center_crop_rect
from printkit.errors import EncodeError, PipelineCancelled
from printkit.utils import CropRect

from .conftest import (
    FixedDetector,
    NoCropDetector,
    RaisingDetector,
    SlowDetector,
    textured_image,
)


def _open(buffer: bytes) -> Image.Image:
    image = Image.open(BytesIO(buffer))
    image.load()
    return image


def test_center_crop_wide_source():
    assert center_crop_rect(4000, 3000, 2, 3) == CropRect(1000, 0, 2000, 3000)


def test_center_crop_tall_source():
    assert center_crop_rect(3000, 6000, 4, 5) == CropRect(0, 1125, 3000, 3750)


def test_center_crop_rounds_offset_half_away():
    # 1 spare pixel: offset 0.5 rounds up
    assert center_crop_rect(1001, 1000, 1, 1) == CropRect(1, 0, 1000, 1000)


def test_center_crop_same_aspect_is_full_frame():
    assert center_crop_rect(200, 300, 2, 3) == CropRect(0, 0, 200, 300)


@pytest.mark.parametrize(
    "detector",
    [NoCropDetector(), RaisingDetector(), FixedDetector(CropRect(300, 0, 200, 300))],
    ids=["no-crop", "raises", "out-of-bounds"],
)
def test_detector_problems_fall_back_to_center(detector):
    image = textured_image(400, 300)
    with Cropper(detector=detector, dpi=72) as cropper:
        result = cropper.crop(image, "2x3", 100, 150)
    assert result.strategy == CENTER
    assert result.source_rect == center_crop_rect(400, 300, 100, 150)
    assert _open(result.buffer).size == (100, 150)


def test_slow_detector_times_out():
    image = textured_image(400, 300)
    with Cropper(detector=SlowDetector(0.5), detector_timeout=0.05) as cropper:
        result = cropper.crop(image, "1x1", 50, 50)
    assert result.strategy == CENTER
    assert (result.width, result.height) == (50, 50)


def test_content_rect_used_when_valid():
    image = textured_image(400, 300)
    detector = FixedDetector(CropRect(0, 0, 200, 300))
    with Cropper(detector=detector) as cropper:
        result = cropper.crop(image, "2x3", 100, 150)
    assert detector.calls == 1
    assert result.strategy == CONTENT
    assert result.source_rect == CropRect(0, 0, 200, 300)
    assert result.ratio == "2x3"


def test_output_jpeg_carries_dpi_and_full_chroma():
    image = textured_image(300, 300)
    with Cropper(detector=NoCropDetector(), dpi=300, quality=95) as cropper:
        result = cropper.crop(image, "1x1", 120, 120)
    encoded = _open(result.buffer)
    assert encoded.format == "JPEG"
    assert encoded.mode == "RGB"
    assert encoded.info["dpi"] == pytest.approx((300, 300))
    assert JpegImagePlugin.get_sampling(encoded) == 0


def test_icc_profile_embedded_when_given():
    image = textured_image(60, 60)
    with Cropper(detector=NoCropDetector(), icc_profile=b"icc-bytes") as cropper:
        result = cropper.crop(image, "1x1", 30, 30)
    assert _open(result.buffer).info.get("icc_profile") == b"icc-bytes"


def test_crop_is_deterministic():
    image = textured_image(320, 200)
    with Cropper(detector=NoCropDetector()) as cropper:
        first = cropper.crop(image, "4x5", 80, 100)
        second = cropper.crop(image, "4x5", 80, 100)
    assert first.buffer == second.buffer


def test_encode_failure_propagates(monkeypatch):
    def broken(*args, **kwargs):
        raise EncodeError("disk full")

    monkeypatch.setattr("printkit.crop.encode_jpeg", broken)
    with Cropper(detector=NoCropDetector()) as cropper:
        with pytest.raises(EncodeError):
            cropper.crop(textured_image(50, 50), "1x1", 20, 20)


def test_cancelled_crop_raises():
    event = threading.Event()
    event.set()
    with Cropper(detector=NoCropDetector()) as cropper:
        with pytest.raises(PipelineCancelled):
            cropper.crop(textured_image(50, 50), "1x1", 20, 20, event)



class StallOnceDetector:
    """First call hangs until released; later calls answer at once."""

    def __init__(self, rect: CropRect):
        self.rect = rect
        self.release = threading.Event()
        self.calls = 0

    def find_crop(self, image, width, height):
        self.calls += 1
        if self.calls == 1:
            self.release.wait(5)
        return self.rect


def test_stuck_detector_does_not_starve_later_crops(caplog):
    image = textured_image(400, 300)
    detector = StallOnceDetector(CropRect(0, 0, 200, 300))
    cropper = Cropper(detector=detector, detector_timeout=0.2, detector_workers=1)
    try:
        with caplog.at_level("WARNING", logger="print-kit.crop"):
            first = cropper.crop(image, "2x3", 100, 150)
        second = cropper.crop(image, "2x3", 100, 150)
    finally:
        detector.release.set()
        cropper.close()

    assert first.strategy == CENTER
    assert "timed out" in caplog.text
    assert second.strategy == CONTENT
    assert detector.calls == 2
