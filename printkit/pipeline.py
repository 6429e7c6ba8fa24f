"""
Request-scoped orchestration: normalize and upscale once, fan crops out to a
bounded worker pool and stream every finished file into the archive.
"""
import asyncio
import functools
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Optional

from PIL import Image

from .config import Settings, get_settings
from .crop import CropDetector, CropResult, Cropper
from .errors import PipelineCancelled, PrintKitError, StageTimeoutError
from .manifest import generate_manifest
from .normalize import NormalizedImage, normalize_image
from .sizes import SizeEntry, active_ratios, largest_master_canvas, size_ladder
from .upscale import UpscaleResult, upscale_to_canvas
from .utils import CropRect, decode_image
from .zip_stream import ArchiveStreamer, entry_path

logger = logging.getLogger("print-kit.pipeline")


@dataclass(frozen=True)
class KitOptions:
    include_every_size: bool = False
    include_5x7: bool = False
    # Restrict the run to these ratios (in catalogue order); empty means all
    only_ratios: tuple[str, ...] = ()

    @property
    def ratios(self) -> tuple[str, ...]:
        ratios = active_ratios(self.include_5x7)
        if not self.only_ratios:
            return ratios
        unknown = set(self.only_ratios) - set(ratios)
        if unknown:
            raise ValueError(f"Ratios not active: {sorted(unknown)}")
        return tuple(r for r in ratios if r in self.only_ratios)


@dataclass(frozen=True)
class ArchiveEntry:
    path: str
    data: bytes


@dataclass
class PreparedSource:
    normalized: NormalizedImage
    canvas: UpscaleResult
    target: tuple[int, int]


@dataclass
class KitReport:
    """What a finished run produced, for logging and the manifest."""

    master_dimensions: dict[str, tuple[int, int]] = field(default_factory=dict)
    source_rects: dict[str, CropRect] = field(default_factory=dict)
    entries: list[str] = field(default_factory=list)
    fallbacks: int = 0


class _Failed:
    def __init__(self, error: BaseException):
        self.error = error


_DONE = object()


class PrintKitPipeline:
    def __init__(
        self,
        basename: str,
        options: Optional[KitOptions] = None,
        settings: Optional[Settings] = None,
        detector: Optional[CropDetector] = None,
    ):
        self.basename = basename
        self.options = options or KitOptions()
        self.settings = settings or get_settings()
        self.detector = detector
        self.report = KitReport()
        self._cancel = threading.Event()
        self._executor = ThreadPoolExecutor(
            max_workers=self.settings.crop_workers,
            thread_name_prefix="print-kit",
        )
        self._closed = False

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def cancel(self) -> None:
        self._cancel.set()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._executor.shutdown(wait=False, cancel_futures=True)

    def plan(self) -> list[tuple[str, SizeEntry]]:
        """Every (ratio, size) the archive will hold, masters first per ratio."""
        return [
            (ratio, entry)
            for ratio in self.options.ratios
            for entry in size_ladder(ratio, self.options.include_every_size)
        ]

    def _path(self, ratio: str, entry: SizeEntry) -> str:
        return entry_path(self.basename, ratio, entry.label, self.settings.dpi)

    async def _run(self, func: Callable, *args, stage: str):
        """Run blocking work in the pool under the operation timeout."""
        if self._cancel.is_set():
            raise PipelineCancelled(f"{stage} cancelled")
        loop = asyncio.get_running_loop()
        call = functools.partial(func, *args)
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(self._executor, call),
                timeout=self.settings.timeout,
            )
        except asyncio.TimeoutError:
            self._cancel.set()
            raise StageTimeoutError(
                f"{stage} exceeded {self.settings.operation_timeout:g}s"
            ) from None

    async def prepare(self, raw: bytes) -> PreparedSource:
        """
        Normalize and upscale the upload once.

        Any failure here happens before the first archive byte exists.
        """
        try:
            return await self._prepare(raw)
        except BaseException:
            self.close()
            raise

    async def _prepare(self, raw: bytes) -> PreparedSource:
        started = time.perf_counter()
        normalized = await self._run(
            normalize_image, raw, self.settings.icc_profile_path,
            stage="normalize",
        )
        logger.info(
            f"Normalized {normalized.original_width}x"
            f"{normalized.original_height}px -> "
            f"{normalized.width}x{normalized.height}px"
        )

        target = largest_master_canvas(self.options.ratios, self.settings.dpi)
        logger.info(f"Target largest master: {target[0]}x{target[1]}px")
        canvas = await self._run(
            upscale_to_canvas, normalized.image, target[0], target[1],
            self._cancel, stage="upscale",
        )
        logger.info(
            f"Canvas ready: {canvas.width}x{canvas.height}px "
            f"(upscaled={canvas.upscaled}, stages={canvas.stages}) "
            f"in {time.perf_counter() - started:.2f}s"
        )
        return PreparedSource(normalized=normalized, canvas=canvas,
                              target=target)

    def _crop(
        self,
        cropper: Cropper,
        image: Image.Image,
        ratio: str,
        entry: SizeEntry
    ) -> CropResult:
        width, height = entry.pixel_size(self.settings.dpi)
        return cropper.crop(image, ratio, width, height, self._cancel)

    async def _put(self, queue: asyncio.Queue, ratio: str, entry: SizeEntry,
                   result: CropResult) -> None:
        if result.strategy != "content":
            self.report.fallbacks += 1
        await queue.put(ArchiveEntry(self._path(ratio, entry), result.buffer))

    async def _ratio_job(
        self,
        cropper: Cropper,
        canvas: Image.Image,
        ratio: str,
        queue: asyncio.Queue
    ) -> None:
        ladder = size_ladder(ratio, self.options.include_every_size)
        master, subs = ladder[0], ladder[1:]

        result = await self._run(
            self._crop, cropper, canvas, ratio, master,
            stage=f"crop {ratio} master",
        )
        self.report.master_dimensions[ratio] = (result.width, result.height)
        self.report.source_rects[ratio] = result.source_rect
        logger.info(
            f"Cropped {ratio} master {result.width}x{result.height}px "
            f"({result.strategy})"
        )
        await self._put(queue, ratio, master, result)

        if not subs:
            return

        # Sub sizes come from the master crop, decoded once and shared
        master_image = await self._run(
            decode_image, result.buffer, stage=f"decode {ratio} master"
        )

        async def sub_job(entry: SizeEntry) -> None:
            sub = await self._run(
                self._crop, cropper, master_image, ratio, entry,
                stage=f"crop {ratio} {entry.label}",
            )
            await self._put(queue, ratio, entry, sub)

        await _gather_or_cancel([sub_job(entry) for entry in subs])
        logger.info(f"Cropped {len(subs)} sub-sizes for {ratio}")

    async def _produce(
        self,
        prepared: PreparedSource,
        queue: asyncio.Queue
    ) -> None:
        cropper = Cropper(
            detector=self.detector,
            detector_timeout=self.settings.detector_timeout,
            detector_workers=self.settings.crop_workers,
            dpi=self.settings.dpi,
            quality=self.settings.jpeg_quality,
            icc_profile=prepared.normalized.icc_profile,
        )
        try:
            await _gather_or_cancel([
                self._ratio_job(cropper, prepared.canvas.image, ratio, queue)
                for ratio in self.options.ratios
            ])
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._cancel.set()
            await queue.put(_Failed(exc))
            return
        finally:
            cropper.close()
        await queue.put(_DONE)

    def _manifest(self, prepared: PreparedSource) -> str:
        normalized = prepared.normalized
        return generate_manifest(
            basename=self.basename,
            aspect_ratios=self.options.ratios,
            every_size=self.options.include_every_size,
            original_dimensions=(normalized.original_width,
                                 normalized.original_height),
            master_dimensions=self.report.master_dimensions,
            dpi=self.settings.dpi,
            quality=self.settings.jpeg_quality,
            upscaled=prepared.canvas.upscaled,
            upscale_stages=prepared.canvas.stages,
        )

    async def stream(self, prepared: PreparedSource) -> AsyncIterator[bytes]:
        """
        Yield ZIP bytes as crops complete.

        Entries arrive in completion order; the manifest is always last and
        the archive is only finalized once every planned entry was written.
        Closing the generator early cancels outstanding crops.
        """
        started = time.perf_counter()
        planned = len(self.plan())
        archive = ArchiveStreamer(compresslevel=self.settings.compress_level)
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.settings.queue_size)
        producer = asyncio.create_task(self._produce(prepared, queue))
        finished = False
        try:
            while True:
                item = await queue.get()
                if item is _DONE:
                    break
                if isinstance(item, _Failed):
                    raise item.error
                chunk = await self._run(
                    archive.add_entry, item.path, item.data,
                    stage=f"archive {item.path}",
                )
                self.report.entries.append(item.path)
                if chunk:
                    yield chunk

            if len(self.report.entries) != planned:
                raise PrintKitError(
                    f"Archive has {len(self.report.entries)} of {planned} "
                    f"planned entries"
                )
            yield archive.finalize(self._manifest(prepared))
            finished = True
            logger.info(
                f"Print kit for {self.basename}: {planned} images + manifest, "
                f"{archive.total_bytes} bytes stored in "
                f"{archive.bytes_written} bytes of ZIP, "
                f"{self.report.fallbacks} center-crop fallbacks, "
                f"{time.perf_counter() - started:.2f}s"
            )
        finally:
            if not finished:
                self._cancel.set()
                archive.abort()
                logger.warning(f"Print kit stream for {self.basename} aborted")
            if not producer.done():
                producer.cancel()
            self.close()

    async def build(self, raw: bytes) -> bytes:
        """Run the whole pipeline and return the archive in one piece."""
        prepared = await self.prepare(raw)
        chunks = []
        async for chunk in self.stream(prepared):
            chunks.append(chunk)
        return b"".join(chunks)


async def _gather_or_cancel(coros: list) -> None:
    """gather(), cancelling the siblings as soon as one fails."""
    tasks = [asyncio.ensure_future(coro) for coro in coros]
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
