"""
Image primitives used by the viewport optimizer.
Thin layer over numpy slicing, OpenCV resizing and Pillow conversion, so the
transform code never talks to those libraries directly.
"""

import logging
from typing import NamedTuple, Optional, Tuple, Union

import cv2
import numpy as np
from PIL import Image

logger = logging.getLogger(__name__)

ImageLike = Union[np.ndarray, Image.Image]
Range = Optional[Tuple[int, int]]


class Size(NamedTuple):
    """Image dimensions in the (width, height) order OpenCV expects"""
    width: int
    height: int


def as_buffer(image: ImageLike) -> np.ndarray:
    """Return a pixel array for either a numpy array or a PIL image"""
    if isinstance(image, Image.Image):
        return np.array(image)
    if not isinstance(image, np.ndarray):
        raise TypeError(f"Unsupported image type: {type(image).__name__}")
    return image


def load_panorama(image_path: str) -> np.ndarray:
    """
    Load an equirectangular image from disk as an RGB array.

    Args:
        image_path: Path to the panorama

    Returns:
        np.ndarray: (H, W, 3) uint8 array
    """
    image = cv2.imread(str(image_path))
    if image is None:
        raise FileNotFoundError(f"Could not read image: {image_path}")
    image = cv2.cvtColor(image, cv2.COLOR_BGR2RGB)
    logger.debug(f"Loaded panorama {image_path}: {image.shape[1]}x{image.shape[0]}")
    return np.ascontiguousarray(image, dtype=np.uint8)


def to_pil(buffer: np.ndarray) -> Image.Image:
    return Image.fromarray(buffer.astype(np.uint8))


def image_size(buffer: np.ndarray) -> Size:
    height, width = buffer.shape[:2]
    return Size(width, height)


def image_bytes(buffer: np.ndarray) -> int:
    return buffer.nbytes


def slice_region(buffer: np.ndarray, rows: Range = None, cols: Range = None) -> np.ndarray:
    """
    View over a rectangular sub-region.

    Ranges are half-open (start, end) pairs; None selects every row/column.
    Out-of-bounds ranges are rejected instead of being truncated the way plain
    numpy slicing would.
    """
    height, width = buffer.shape[:2]
    row_start, row_end = rows if rows is not None else (0, height)
    col_start, col_end = cols if cols is not None else (0, width)

    if not (0 <= row_start <= row_end <= height):
        raise ValueError(f"Row range [{row_start}, {row_end}) outside image of height {height}")
    if not (0 <= col_start <= col_end <= width):
        raise ValueError(f"Column range [{col_start}, {col_end}) outside image of width {width}")

    return buffer[row_start:row_end, col_start:col_end]


def _check_concat_inputs(*buffers: np.ndarray):
    first = buffers[0]
    for other in buffers[1:]:
        if other.shape[0] != first.shape[0]:
            raise ValueError(f"Row count mismatch: {first.shape[0]} vs {other.shape[0]}")
        if other.shape[2:] != first.shape[2:] or other.dtype != first.dtype:
            raise ValueError(
                f"Pixel type mismatch: {first.dtype}{first.shape[2:]} vs {other.dtype}{other.shape[2:]}"
            )


def hconcat2(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    _check_concat_inputs(a, b)
    return np.concatenate((a, b), axis=1)


def hconcat3(a: np.ndarray, b: np.ndarray, c: np.ndarray) -> np.ndarray:
    # any part may be zero columns wide
    _check_concat_inputs(a, b, c)
    return np.concatenate((a, b, c), axis=1)


def resize(buffer: np.ndarray, size: Size) -> np.ndarray:
    """Resample to exactly `size` using OpenCV's default (bilinear) interpolation"""
    if size.width <= 0 or size.height <= 0:
        raise ValueError(f"Cannot resize to empty size {size.width}x{size.height}")
    source = np.ascontiguousarray(buffer)
    resized = cv2.resize(source, (size.width, size.height))
    # cv2 drops a trailing single channel axis
    if resized.ndim < source.ndim:
        resized = resized.reshape(resized.shape + source.shape[resized.ndim:])
    return resized


def fill_constant(buffer: np.ndarray, value=0) -> np.ndarray:
    buffer[...] = value
    return buffer


def blank(rows: int, cols: int, like: np.ndarray, value=0) -> np.ndarray:
    """New buffer of the given size with `like`'s pixel type, filled with `value`"""
    if rows < 0 or cols < 0:
        raise ValueError(f"Negative buffer size {cols}x{rows}")
    buffer = np.empty((rows, cols) + like.shape[2:], dtype=like.dtype)
    return fill_constant(buffer, value)


def copy_into(src: np.ndarray, dst_view: np.ndarray):
    """Overwrite `dst_view` with the pixels of `src`; shapes must match exactly"""
    if src.shape != dst_view.shape:
        raise ValueError(f"Shape mismatch when copying: {src.shape} into {dst_view.shape}")
    np.copyto(dst_view, src)
