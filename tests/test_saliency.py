from PIL import Image

from printkit.saliency import SaliencyDetector
from printkit.utils import CropRect


def _checkerboard(image: Image.Image, left: int, top: int, size: int) -> None:
    for y in range(top, top + size):
        for x in range(left, left + size):
            if (x // 5 + y // 5) % 2:
                image.putpixel((x, y), (255, 255, 255))
            else:
                image.putpixel((x, y), (0, 0, 0))


def test_window_follows_detail():
    image = Image.new("RGB", (400, 200), (128, 128, 128))
    _checkerboard(image, 300, 50, 90)

    rect = SaliencyDetector().find_crop(image, 100, 100)

    assert rect is not None
    assert (rect.width, rect.height) == (200, 200)
    assert rect.fits(400, 200)
    # Block spans x 300-390; the window must contain it
    assert rect.x <= 300
    assert rect.x + rect.width >= 390


def test_flat_image_has_no_crop():
    image = Image.new("RGB", (400, 200), (128, 128, 128))
    assert SaliencyDetector().find_crop(image, 100, 100) is None


def test_matching_aspect_returns_full_frame():
    image = Image.new("RGB", (300, 200), (128, 128, 128))
    assert SaliencyDetector().find_crop(image, 3, 2) == CropRect(0, 0, 300, 200)


def test_crop_size_is_largest_fitting_window():
    detector = SaliencyDetector()
    assert detector.crop_size(400, 200, 1, 1) == (200, 200)
    assert detector.crop_size(400, 300, 2, 3) == (200, 300)
    assert detector.crop_size(3000, 6000, 4, 5) == (3000, 3750)
