import logging
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Optional, Protocol

from PIL import Image

from .errors import DetectorFailure, PipelineCancelled
from .saliency import SaliencyDetector
from .sizes import round_half_away
from .utils import CropRect, LANCZOS, encode_jpeg, extract, resample

logger = logging.getLogger("print-kit.crop")

CONTENT = "content"
CENTER = "center"


class CropDetector(Protocol):
    def find_crop(
        self, image: Image.Image, width: int, height: int
    ) -> Optional[CropRect]:
        ...


@dataclass(frozen=True)
class DetectorOutcome:
    """Either a usable rectangle or the reason to fall back."""

    rect: Optional[CropRect] = None
    reason: Optional[str] = None

    @property
    def fallback(self) -> bool:
        return self.rect is None


@dataclass
class CropResult:
    buffer: bytes
    width: int
    height: int
    source_rect: CropRect
    strategy: str
    ratio: Optional[str] = None


def center_crop_rect(
    src_w: int,
    src_h: int,
    target_w: int,
    target_h: int
) -> CropRect:
    """Largest centered rectangle with the target's aspect ratio."""
    target_aspect = target_w / target_h
    source_aspect = src_w / src_h

    if source_aspect > target_aspect:
        # Source is relatively wider: keep full height
        crop_h = src_h
        crop_w = round_half_away(src_h * target_aspect)
        crop_x = round_half_away((src_w - crop_w) / 2)
        crop_y = 0
    else:
        crop_w = src_w
        crop_h = round_half_away(src_w / target_aspect)
        crop_x = 0
        crop_y = round_half_away((src_h - crop_h) / 2)

    crop_w = max(1, min(crop_w, src_w))
    crop_h = max(1, min(crop_h, src_h))
    crop_x = max(0, min(crop_x, src_w - crop_w))
    crop_y = max(0, min(crop_y, src_h - crop_h))
    return CropRect(crop_x, crop_y, crop_w, crop_h)


class Cropper:
    """
    Crops one shared source image to many target sizes.

    Every crop first asks the detector for a content-aware rectangle and
    silently falls back to a center crop when the detector has nothing
    usable, raises, or runs past detector_timeout. The source image is only
    read, so one instance can serve concurrent crops.
    """

    def __init__(
        self,
        detector: Optional[CropDetector] = None,
        detector_timeout: float = 30.0,
        dpi: int = 300,
        quality: int = 95,
        icc_profile: Optional[bytes] = None,
        detector_workers: int = 2,
    ):
        self.detector = detector if detector is not None else SaliencyDetector()
        self.detector_timeout = detector_timeout
        self.dpi = dpi
        self.quality = quality
        self.icc_profile = icc_profile
        self.detector_workers = detector_workers
        self._pool_lock = threading.Lock()
        self._closed = False
        self._detector_pool = self._new_pool()

    def _new_pool(self) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(
            max_workers=self.detector_workers, thread_name_prefix="detector"
        )

    def close(self) -> None:
        with self._pool_lock:
            self._closed = True
            self._detector_pool.shutdown(wait=False, cancel_futures=True)

    def _retire_pool(self, pool: ThreadPoolExecutor) -> None:
        """
        Abandon a pool holding a detector call that ran past its timeout.

        A running call cannot be interrupted, so later crops get a fresh
        pool instead of queueing behind the stuck worker.
        """
        with self._pool_lock:
            if self._closed or pool is not self._detector_pool:
                return
            self._detector_pool = self._new_pool()
        pool.shutdown(wait=False)

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def _call_detector(
        self,
        image: Image.Image,
        width: int,
        height: int
    ) -> CropRect:
        rect = self.detector.find_crop(image, width, height)
        if rect is None:
            raise DetectorFailure("Detector found no crop")
        return rect

    def locate(
        self,
        image: Image.Image,
        width: int,
        height: int
    ) -> DetectorOutcome:
        """Run the detector; never raises."""
        with self._pool_lock:
            pool = self._detector_pool
            future = pool.submit(self._call_detector, image, width, height)
        try:
            rect = future.result(timeout=self.detector_timeout)
        except FutureTimeout:
            if not future.cancel():
                self._retire_pool(pool)
            logger.warning(
                f"Detector timed out after {self.detector_timeout:g}s "
                f"on {image.width}x{image.height} for {width}x{height}"
            )
            return DetectorOutcome(reason="timeout")
        except DetectorFailure:
            return DetectorOutcome(reason="none")
        except Exception as exc:
            logger.warning(f"Detector error: {exc!r}")
            return DetectorOutcome(reason="error")

        if not rect.fits(image.width, image.height):
            logger.warning(
                f"Detector rect {rect} outside {image.width}x{image.height}"
            )
            return DetectorOutcome(reason="invalid")
        return DetectorOutcome(rect=rect)

    def crop(
        self,
        image: Image.Image,
        ratio: Optional[str],
        target_w: int,
        target_h: int,
        cancel_event: Optional[threading.Event] = None
    ) -> CropResult:
        """Crop image to exactly target_w x target_h and encode as JPEG."""
        self._check_cancel(cancel_event)
        outcome = self.locate(image, target_w, target_h)

        if outcome.fallback:
            rect = center_crop_rect(
                image.width, image.height, target_w, target_h
            )
            strategy = CENTER
            logger.info(
                f"Smart crop unavailable for {ratio} {target_w}x{target_h} "
                f"({outcome.reason}), center crop {rect}"
            )
        else:
            rect = outcome.rect
            strategy = CONTENT

        self._check_cancel(cancel_event)
        region = extract(image, rect)
        if region.size != (target_w, target_h):
            region = resample(region, target_w, target_h, LANCZOS)

        self._check_cancel(cancel_event)
        buffer = encode_jpeg(
            region, quality=self.quality, dpi=self.dpi,
            icc_profile=self.icc_profile
        )
        return CropResult(
            buffer=buffer,
            width=target_w,
            height=target_h,
            source_rect=rect,
            strategy=strategy,
            ratio=ratio,
        )

    @staticmethod
    def _check_cancel(cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise PipelineCancelled("Crop cancelled")
