"""
Image backends for Shot Merge.

The batch processor only ever needs two things from an image library:
the pixel size of a file, and "cut a rectangle out of one image and lay
it over another". Both live behind the ``ImageTool`` protocol so the
processor can run against Pillow (in-process, the default), the
ImageMagick command line, or a fake in tests.
"""

import logging
import subprocess
from pathlib import Path
from typing import Protocol

from PIL import Image

from shot_merge.config import BACKEND_MAGICK, BACKEND_PILLOW
from shot_merge.errors import ImageToolError, MergeError

logger = logging.getLogger(__name__)

# (x, y, width, height)
CropRect = tuple[int, int, int, int]
# (x, y)
Offset = tuple[int, int]


class ImageTool(Protocol):
    """Expected interface for an image backend."""

    def get_dimensions(self, path: Path) -> tuple[int, int]:
        """Return the (width, height) of the image at *path*."""
        ...

    def crop_and_composite(
        self,
        base: Path,
        overlay_target: Path,
        crop_rect: CropRect,
        paste_offset: Offset,
        output_path: Path,
    ) -> None:
        """Copy *crop_rect* of *base* onto *overlay_target* and write *output_path*."""
        ...


def _check_bounds(crop_rect: CropRect, size: tuple[int, int]) -> None:
    x, y, w, h = crop_rect
    width, height = size
    if x < 0 or y < 0 or x + w > width or y + h > height:
        raise MergeError(
            f"Crop region {w}x{h}+{x}+{y} does not fit in a {width}x{height} image"
        )


class PillowImageTool:
    """In-process backend built on Pillow."""

    def get_dimensions(self, path: Path) -> tuple[int, int]:
        try:
            with Image.open(path) as img:
                return img.size
        except (OSError, Image.DecompressionBombError) as exc:
            raise ImageToolError(f"Cannot read {Path(path).name}: {exc}") from exc

    def crop_and_composite(
        self,
        base: Path,
        overlay_target: Path,
        crop_rect: CropRect,
        paste_offset: Offset,
        output_path: Path,
    ) -> None:
        x, y, w, h = crop_rect
        try:
            with Image.open(base) as src:
                _check_bounds(crop_rect, src.size)
                region = src.crop((x, y, x + w, y + h))
                region.load()

            with Image.open(overlay_target) as target:
                mode = target.mode if target.mode in ("RGB", "RGBA") else "RGBA"
                canvas = target.convert(mode)

            region = region.convert(canvas.mode)
            mask = region if region.mode == "RGBA" else None
            canvas.paste(region, paste_offset, mask)
            canvas.save(output_path)
        except (OSError, ValueError) as exc:
            raise MergeError(str(exc)) from exc

        logger.debug(
            "Stamped %dx%d+%d+%d of %s onto %s -> %s",
            w, h, x, y, Path(base).name, Path(overlay_target).name, output_path,
        )


class MagickImageTool:
    """
    Backend that shells out to the ImageMagick 7 ``magick`` binary.

    Parameters
    ----------
    binary : str
        Executable name or path.
    timeout : float, optional
        Seconds to wait for each invocation. None waits forever.
    """

    def __init__(self, binary: str = "magick", timeout: float | None = None):
        self.binary = binary
        self.timeout = timeout

    def _run(self, args: list[str], error_cls: type[ImageToolError] = ImageToolError) -> str:
        cmd = [self.binary, *args]
        logger.debug("Running %s", " ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                check=True,
                timeout=self.timeout,
            )
        except FileNotFoundError as exc:
            raise error_cls(f"ImageMagick executable not found: {self.binary}") from exc
        except subprocess.TimeoutExpired as exc:
            raise error_cls(
                f"{self.binary} timed out after {self.timeout}s"
            ) from exc
        except subprocess.CalledProcessError as exc:
            detail = (exc.stderr or "").strip() or f"exit status {exc.returncode}"
            raise error_cls(detail) from exc
        return result.stdout

    def get_dimensions(self, path: Path) -> tuple[int, int]:
        output = self._run(["identify", "-quiet", "-format", "%w %h\n", str(path)])
        first = output.strip().splitlines()[0] if output.strip() else ""
        try:
            width, height = (int(v) for v in first.split())
        except ValueError as exc:
            raise ImageToolError(f"Unexpected identify output: {output!r}") from exc
        return width, height

    def crop_and_composite(
        self,
        base: Path,
        overlay_target: Path,
        crop_rect: CropRect,
        paste_offset: Offset,
        output_path: Path,
    ) -> None:
        x, y, w, h = crop_rect
        px, py = paste_offset
        output_path = Path(output_path)
        temp_crop = output_path.with_name(f"temp_crop_{output_path.stem}.png")
        try:
            self._run(
                [str(base), "-crop", f"{w}x{h}+{x}+{y}", "+repage", str(temp_crop)],
                MergeError,
            )
            self._run(
                [
                    str(overlay_target),
                    str(temp_crop),
                    "-geometry",
                    f"+{px}+{py}",
                    "-composite",
                    str(output_path),
                ],
                MergeError,
            )
        finally:
            temp_crop.unlink(missing_ok=True)


def create_image_tool(
    name: str = BACKEND_PILLOW,
    magick_binary: str = "magick",
    timeout: float | None = None,
) -> ImageTool:
    """Return the image backend called *name*."""
    if name == BACKEND_PILLOW:
        return PillowImageTool()
    if name == BACKEND_MAGICK:
        return MagickImageTool(magick_binary, timeout=timeout or None)
    raise ValueError(f"Unknown image backend: {name!r}")
