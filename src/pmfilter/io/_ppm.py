# SPDX-FileCopyrightText: Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Binary PPM (P6) reading and writing.

Only the layout written by :func:`save_ppm` is accepted on input::

    P6
    # optional comment lines
    <width> <height>
    255
    <width * height * 3 bytes of RGB data>
"""

import os

import numpy as np

from pmfilter._errors import FormatError
from pmfilter.util import rgba_to_rgb

__all__ = ["load_ppm", "save_ppm", "imread", "imsave"]

MAGIC = b"P6"
MAX_VALUE = 255


def _next_line(buf, pos):
    end = buf.find(b"\n", pos)
    if end < 0:
        raise FormatError("unexpected end of PPM header")
    return buf[pos:end].rstrip(b"\r"), end + 1


def _parse(buf):
    line, pos = _next_line(buf, 0)
    if line.strip() != MAGIC:
        raise FormatError(f"not a binary PPM file (expected {MAGIC!r} magic)")

    while True:
        line, pos = _next_line(buf, pos)
        stripped = line.strip()
        if stripped and not stripped.startswith(b"#"):
            break

    fields = line.split()
    try:
        width, height = (int(v) for v in fields)
    except ValueError:
        raise FormatError(
            f"invalid PPM size line: {line.decode(errors='replace')!r}"
        ) from None
    if width <= 0 or height <= 0:
        raise FormatError(f"invalid PPM size: {width} x {height}")

    line, pos = _next_line(buf, pos)
    if line.strip() != str(MAX_VALUE).encode():
        raise FormatError(
            "unsupported PPM maximum channel value "
            f"{line.decode(errors='replace').strip()!r} (expected {MAX_VALUE})"
        )

    data = buf[pos:]
    expected = width * height * 3
    if len(data) != expected:
        raise FormatError(
            f"PPM pixel data has {len(data)} bytes, expected {expected}"
        )
    return width, height, data


def load_ppm(path):
    """Read a binary PPM file.

    Parameters
    ----------
    path : str or os.PathLike
        File to read.

    Returns
    -------
    width, height : int
        Image size in pixels.
    data : bytes
        Row-major RGB data of length ``width * height * 3``.

    Raises
    ------
    FormatError
        If the header or the pixel data length does not match the layout.
    """
    with open(os.fspath(path), "rb") as f:
        buf = f.read()
    return _parse(buf)


def save_ppm(path, width, height, data):
    """Write row-major RGB bytes as a binary PPM file."""
    data = bytes(data)
    expected = width * height * 3
    if len(data) != expected:
        raise FormatError(
            f"RGB data has {len(data)} bytes, expected {expected} for a "
            f"{width} x {height} image"
        )
    with open(os.fspath(path), "wb") as f:
        f.write(b"%s\n%d %d\n%d\n" % (MAGIC, width, height, MAX_VALUE))
        f.write(data)


def imread(path):
    """Read a binary PPM file into an ``(height, width, 3)`` uint8 array."""
    width, height, data = load_ppm(path)
    return np.frombuffer(data, dtype=np.uint8).reshape(height, width, 3).copy()


def imsave(path, image):
    """Save an ``(h, w, 3)`` or ``(h, w, 4)`` uint8 array as binary PPM.

    The alpha channel of RGBA input is dropped.
    """
    image = np.asarray(image)
    if image.dtype != np.uint8:
        raise FormatError(f"image must have dtype uint8, got {image.dtype}")
    if image.ndim != 3 or image.shape[-1] not in (3, 4):
        raise FormatError(
            "image must have shape (height, width, 3) or (height, width, 4), "
            f"got {image.shape}"
        )
    if image.shape[-1] == 4:
        image = rgba_to_rgb(image)
    height, width = image.shape[:2]
    save_ppm(path, width, height, np.ascontiguousarray(image).tobytes())
