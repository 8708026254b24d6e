"""
Viewport Optimizer
Viewport-adaptive transcoding of equirectangular 360° frames: keeps the area
around the viewing direction at full resolution, blurs the rest of a 180° crop
and discards the opposite hemisphere.
"""

import logging
from dataclasses import dataclass
from typing import Tuple, Union

import numpy as np

import image_ops
from image_ops import ImageLike, Size
from timing import Timer

logger = logging.getLogger(__name__)

CROP_ANGLE = 180     # total horizontal field kept
H_FOCUS_ANGLE = 30   # horizontal field kept at full resolution
V_FOCUS_ANGLE = 30   # vertical field kept at full resolution
BLUR_FACTOR = 3      # downsample ratio of the background

Number = Union[int, float]


class GeometryError(ValueError):
    """Crop or focus geometry is inconsistent with the image it applies to"""


class ReconstructionError(GeometryError):
    """The reconstructed frame does not have the original panorama's size"""


def _require(condition: bool, message: str, error_cls=GeometryError):
    if not condition:
        logger.error(message)
        raise error_cls(message)


@dataclass(frozen=True, eq=False)
class OptimizedImage:
    """
    Reduced representation of one panorama frame.

    `focused` is placed at (focus_row, focus_col) inside `blurred`, and
    `blurred` starts at column `left_buffer` of a `full_size` frame. Both
    buffers are private read-only copies.
    """
    focused: np.ndarray
    blurred: np.ndarray
    focus_row: int
    focus_col: int
    full_size: Size
    left_buffer: int

    def __post_init__(self):
        for name in ("focused", "blurred"):
            buffer = np.array(getattr(self, name), copy=True)
            buffer.flags.writeable = False
            object.__setattr__(self, name, buffer)
        object.__setattr__(self, "full_size", Size(*self.full_size))

        focus_size = self.focus_size
        cropped_size = self.cropped_size
        _require(
            0 <= self.focus_col and self.focus_col + focus_size.width <= cropped_size.width,
            f"Focus columns [{self.focus_col}, {self.focus_col + focus_size.width}) "
            f"outside crop of width {cropped_size.width}",
        )
        _require(
            0 <= self.focus_row and self.focus_row + focus_size.height <= cropped_size.height,
            f"Focus rows [{self.focus_row}, {self.focus_row + focus_size.height}) "
            f"outside crop of height {cropped_size.height}",
        )
        _require(
            cropped_size.width <= self.full_size.width,
            f"Crop width {cropped_size.width} exceeds full width {self.full_size.width}",
        )
        _require(
            0 <= self.left_buffer < self.full_size.width,
            f"Left buffer {self.left_buffer} outside [0, {self.full_size.width})",
        )

    @property
    def focus_size(self) -> Size:
        return image_ops.image_size(self.focused)

    @property
    def cropped_size(self) -> Size:
        return image_ops.image_size(self.blurred)

    @property
    def nbytes(self) -> int:
        """Combined footprint of both pixel buffers"""
        return image_ops.image_bytes(self.focused) + image_ops.image_bytes(self.blurred)


def constrain_angle(x: Number) -> Number:
    """Wrap an angle in degrees into [0, 360)"""
    x = x % 360
    # float modulo of a tiny negative value rounds up to exactly 360.0
    if x >= 360:
        x = type(x)(0)
    return x


def clamp(x: int, lo: int, hi: int) -> int:
    return max(lo, min(x, hi))


def crop_horizontally_wrapped(image: np.ndarray, left_col: int, right_col: int) -> np.ndarray:
    """
    Cut the columns from left_col to right_col out of a panorama.

    When left_col > right_col the window crosses the 0°/360° seam and is
    assembled from [left_col, width) followed by [0, right_col).
    """
    width = image.shape[1]
    _require(0 <= left_col < width, f"Left column {left_col} outside [0, {width})")
    _require(0 <= right_col < width, f"Right column {right_col} outside [0, {width})")

    if left_col < right_col:
        logger.debug(f"Cropping columns [{left_col}, {right_col})")
        return image_ops.slice_region(image, cols=(left_col, right_col))

    _require(left_col > right_col, f"Empty crop window at column {left_col}")
    logger.debug(f"Cropping columns [{left_col}, {width}) + [0, {right_col}) across the seam")
    left_part = image_ops.slice_region(image, cols=(left_col, width))
    right_part = image_ops.slice_region(image, cols=(0, right_col))
    return image_ops.hconcat2(left_part, right_part)


def uncrop_wrapped(cropped: np.ndarray, full_width: int, left_buffer: int) -> np.ndarray:
    """
    Place a crop back at its original columns of a full_width frame.

    Columns the crop does not cover are black. Inverse of
    crop_horizontally_wrapped.
    """
    num_rows, cropped_width = cropped.shape[:2]

    if cropped_width + left_buffer >= full_width:
        # Wrapped: output is crop tail + black + crop head
        right_end = full_width - left_buffer
        _require(
            0 <= right_end <= cropped_width,
            f"Left buffer {left_buffer} inconsistent with crop width {cropped_width} "
            f"and full width {full_width}",
            ReconstructionError,
        )
        full_right = image_ops.slice_region(cropped, cols=(0, right_end))
        full_left = image_ops.slice_region(cropped, cols=(right_end, cropped_width))

        center_cols = full_width - full_right.shape[1] - full_left.shape[1]
        _require(center_cols >= 0, f"Negative padding width {center_cols}", ReconstructionError)
        full_center = image_ops.blank(num_rows, center_cols, like=cropped)
    else:
        full_left = image_ops.blank(num_rows, left_buffer, like=cropped)
        full_center = cropped

        right_cols = full_width - left_buffer - cropped_width
        _require(right_cols >= 0, f"Negative padding width {right_cols}", ReconstructionError)
        full_right = image_ops.blank(num_rows, right_cols, like=cropped)

    return image_ops.hconcat3(full_left, full_center, full_right)


class Optimizer:
    """Forward and inverse viewport transforms. Stateless."""

    @staticmethod
    def optimize_image(panorama: ImageLike, angle: Number, v_angle: Number) -> OptimizedImage:
        """
        Reduce a panorama to a full-resolution focus patch plus a blurred
        180° crop centered on the viewing direction.

        Args:
            panorama: Equirectangular frame, (H, W) or (H, W, C) array or PIL image
            angle: Horizontal viewing direction in degrees, wrapped modulo 360
            v_angle: Vertical viewing direction in degrees from the top edge

        Returns:
            OptimizedImage: Self-contained representation of the frame
        """
        timer = Timer(logger)
        image = image_ops.as_buffer(panorama)

        angle = constrain_angle(angle)
        _require(H_FOCUS_ANGLE < CROP_ANGLE, "Focus angle must be smaller than crop angle")

        full_size = image_ops.image_size(image)
        width, height = full_size
        angle_to_width = width / 360.0
        angle_to_height = height / 180.0

        left_angle = constrain_angle(angle - CROP_ANGLE // 2)
        right_angle = constrain_angle(angle + CROP_ANGLE // 2)

        left_col = int(left_angle * angle_to_width)
        right_col = int(right_angle * angle_to_width)

        timer.start()
        cropped = crop_horizontally_wrapped(image, left_col, right_col)
        timer.stop("Cropping")
        cropped_width, cropped_height = image_ops.image_size(cropped)

        focus_width = int(H_FOCUS_ANGLE * angle_to_width)
        focus_left_col = cropped_width // 2 - focus_width // 2
        focus_right_col = cropped_width // 2 + focus_width // 2
        _require(
            0 <= focus_left_col <= focus_right_col <= cropped_width,
            f"Focus columns [{focus_left_col}, {focus_right_col}) do not fit "
            f"in crop of width {cropped_width}",
        )

        focus_height = int(V_FOCUS_ANGLE * angle_to_height)
        focus_middle_row = clamp(
            int(v_angle * angle_to_height),
            focus_height // 2,
            height - focus_height // 2,
        )
        focus_top_row = focus_middle_row - focus_height // 2
        focus_bottom_row = focus_middle_row + focus_height // 2
        _require(
            0 <= focus_top_row <= focus_bottom_row <= height,
            f"Focus rows [{focus_top_row}, {focus_bottom_row}) do not fit in height {height}",
        )

        timer.start()
        focused = image_ops.slice_region(
            cropped,
            rows=(focus_top_row, focus_bottom_row),
            cols=(focus_left_col, focus_right_col),
        )
        timer.stop("Splitting")

        small_size = Size(cropped_width // BLUR_FACTOR, cropped_height // BLUR_FACTOR)
        _require(
            small_size.width > 0 and small_size.height > 0,
            f"Crop {cropped_width}x{cropped_height} too small to downsample by {BLUR_FACTOR}",
        )

        timer.start()
        small = image_ops.resize(cropped, small_size)
        blurred = image_ops.resize(small, Size(cropped_width, cropped_height))
        timer.stop("Blurring")

        logger.debug(
            f"Optimized {width}x{height} at angle={angle}, v_angle={v_angle}: "
            f"crop from column {left_col}, focus {focus_right_col - focus_left_col}x"
            f"{focus_bottom_row - focus_top_row} at ({focus_top_row}, {focus_left_col})"
        )

        return OptimizedImage(
            focused=focused,
            blurred=blurred,
            focus_row=focus_top_row,
            focus_col=focus_left_col,
            full_size=full_size,
            left_buffer=left_col,
        )

    @staticmethod
    def extract_image(optimized: OptimizedImage) -> np.ndarray:
        """Rebuild a full-size frame; discarded columns come back black"""
        timer = Timer(logger)

        timer.start()
        cropped = optimized.blurred.copy()
        focus_width, focus_height = optimized.focus_size
        target = image_ops.slice_region(
            cropped,
            rows=(optimized.focus_row, optimized.focus_row + focus_height),
            cols=(optimized.focus_col, optimized.focus_col + focus_width),
        )
        image_ops.copy_into(optimized.focused, target)
        timer.stop("Reconstructing")

        timer.start()
        full_image = uncrop_wrapped(cropped, optimized.full_size.width, optimized.left_buffer)
        timer.stop("Full image")

        result_size = image_ops.image_size(full_image)
        _require(
            result_size == optimized.full_size,
            f"Reconstructed size {result_size.width}x{result_size.height} does not match "
            f"original {optimized.full_size.width}x{optimized.full_size.height}",
            ReconstructionError,
        )
        return full_image

    @staticmethod
    def process_image(panorama: ImageLike, angle: Number, v_angle: Number) -> np.ndarray:
        """
        Forward and inverse transform in one call, to inspect what survives.

        Not idempotent: a second pass re-derives its geometry from the
        already padded frame.
        """
        return Optimizer.extract_image(Optimizer.optimize_image(panorama, angle, v_angle))


optimize_image = Optimizer.optimize_image
extract_image = Optimizer.extract_image
process_image = Optimizer.process_image


def compression_stats(panorama: ImageLike, optimized: OptimizedImage) -> Tuple[int, int, float]:
    """Bytes before, bytes after and their ratio"""
    original_bytes = image_ops.image_bytes(image_ops.as_buffer(panorama))
    optimized_bytes = optimized.nbytes
    ratio = optimized_bytes / original_bytes if original_bytes else 0.0
    return original_bytes, optimized_bytes, ratio


def example_usage(
    input_path: str = "./VideoData/mono_smart_59/frame_04998.jpg",
    output_path: str = "optimized_frame.jpg",
    angle: int = 0,
    v_angle: int = 90,
):
    """
    Example usage: optimize one frame and save the reconstruction
    """
    logging.basicConfig(level=logging.INFO)

    panorama = image_ops.load_panorama(input_path)
    optimized = optimize_image(panorama, angle, v_angle)

    original_bytes, optimized_bytes, ratio = compression_stats(panorama, optimized)
    logger.info(f"Optimized {original_bytes} bytes down to {optimized_bytes} ({ratio:.1%})")

    reconstructed = extract_image(optimized)
    image_ops.to_pil(reconstructed).save(output_path)
    logger.info(f"Reconstructed frame saved to: {output_path}")


if __name__ == "__main__":
    example_usage()
