"""
Content-aware crop detector.

Scores every placement of the largest target-shaped window over a
downsampled energy map built from edges, saturation and skin tones, and
returns the placement holding the most energy. Featureless images yield
no crop so the caller can fall back to a centered one.
"""
import logging
from typing import Optional

import numpy as np
from PIL import Image, ImageFilter

from .utils import CropRect

logger = logging.getLogger("print-kit.saliency")

SKIN_COLOR = np.array([0.78, 0.57, 0.44], dtype=np.float32)
SKIN_COLOR = SKIN_COLOR / np.linalg.norm(SKIN_COLOR)


def _energy_map(
    small: Image.Image,
    edge_weight: float,
    saturation_weight: float,
    skin_weight: float,
) -> np.ndarray:
    rgb = np.asarray(small, dtype=np.float32) / 255.0
    edges = np.asarray(
        small.convert("L").filter(ImageFilter.FIND_EDGES), dtype=np.float32
    ) / 255.0
    # FIND_EDGES leaves garbage on the outermost ring
    edges[0, :] = edges[-1, :] = 0
    edges[:, 0] = edges[:, -1] = 0

    max_c = rgb.max(axis=2)
    min_c = rgb.min(axis=2)
    lightness = (max_c + min_c) / 2
    saturation = (max_c - min_c) / (max_c + 1e-6)
    saturation *= (lightness > 0.05) & (lightness < 0.9)

    norm = rgb / (np.linalg.norm(rgb, axis=2, keepdims=True) + 1e-6)
    distance = np.linalg.norm(norm - SKIN_COLOR, axis=2)
    skin = np.clip(1.0 - distance / 0.15, 0.0, 1.0)
    skin *= (lightness > 0.2) & (lightness < 0.95)

    return (
        edge_weight * edges
        + saturation_weight * saturation
        + skin_weight * skin
    )


def _window_sums(energy: np.ndarray, win_h: int, win_w: int) -> np.ndarray:
    """Energy inside every win_h x win_w placement, via an integral image."""
    h, w = energy.shape
    integral = np.zeros((h + 1, w + 1), dtype=np.float64)
    integral[1:, 1:] = energy.cumsum(axis=0).cumsum(axis=1)
    ny = h - win_h + 1
    nx = w - win_w + 1
    return (
        integral[win_h:win_h + ny, win_w:win_w + nx]
        - integral[0:ny, win_w:win_w + nx]
        - integral[win_h:win_h + ny, 0:nx]
        + integral[0:ny, 0:nx]
    )


class SaliencyDetector:
    def __init__(
        self,
        analysis_size: int = 256,
        edge_weight: float = 1.0,
        saturation_weight: float = 0.4,
        skin_weight: float = 1.2,
        center_bias: float = 0.02,
        min_mean_energy: float = 0.005,
    ):
        self.analysis_size = analysis_size
        self.edge_weight = edge_weight
        self.saturation_weight = saturation_weight
        self.skin_weight = skin_weight
        self.center_bias = center_bias
        self.min_mean_energy = min_mean_energy

    def crop_size(
        self,
        src_w: int,
        src_h: int,
        width: int,
        height: int
    ) -> tuple[int, int]:
        """Largest width:height window that fits inside the source."""
        scale = min(src_w / width, src_h / height)
        return (
            max(1, min(src_w, int(width * scale))),
            max(1, min(src_h, int(height * scale))),
        )

    def find_crop(
        self,
        image: Image.Image,
        width: int,
        height: int
    ) -> Optional[CropRect]:
        src_w, src_h = image.size
        crop_w, crop_h = self.crop_size(src_w, src_h, width, height)
        if crop_w == src_w and crop_h == src_h:
            return CropRect(0, 0, src_w, src_h)

        factor = max(1.0, max(src_w, src_h) / self.analysis_size)
        small_w = max(1, round(src_w / factor))
        small_h = max(1, round(src_h / factor))
        rgb = image if image.mode == "RGB" else image.convert("RGB")
        small = rgb.resize(
            (small_w, small_h), Image.Resampling.BOX, reducing_gap=2.0
        )

        energy = _energy_map(
            small, self.edge_weight, self.saturation_weight, self.skin_weight
        )
        mean_energy = float(energy.mean())
        if mean_energy < self.min_mean_energy:
            logger.info(
                f"No salient content (mean energy {mean_energy:.4f})"
            )
            return None

        scale_x = src_w / small_w
        scale_y = src_h / small_h
        win_w = min(small_w, max(1, round(crop_w / scale_x)))
        win_h = min(small_h, max(1, round(crop_h / scale_y)))

        sums = _window_sums(energy, win_h, win_w)
        scores = sums / float(energy.sum())
        ny, nx = scores.shape
        ys, xs = np.mgrid[0:ny, 0:nx]
        dx = (xs - (nx - 1) / 2) / max(nx - 1, 1)
        dy = (ys - (ny - 1) / 2) / max(ny - 1, 1)
        scores = scores - self.center_bias * np.sqrt(dx ** 2 + dy ** 2)

        best_y, best_x = np.unravel_index(int(np.argmax(scores)), scores.shape)
        x = min(max(0, round(best_x * scale_x)), src_w - crop_w)
        y = min(max(0, round(best_y * scale_y)), src_h - crop_h)
        return CropRect(int(x), int(y), crop_w, crop_h)
