# SPDX-FileCopyrightText: Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Packing of RGBA byte channels into 32-bit words.

A packed word stores one pixel as ``(A << 24) | (R << 16) | (G << 8) | B``.
This is the layout consumed by both the sequential engine and the CUDA
kernel.
"""

import numpy as np

from pmfilter._errors import FormatError

__all__ = ["pack", "unpack", "extract_channel", "rgb_to_rgba", "rgba_to_rgb"]

# bit offset of each channel in a packed word, indexed by channel (R, G, B, A)
_CHANNEL_SHIFTS = (16, 8, 0, 24)


def _as_byte_array(pixels):
    if isinstance(pixels, (bytes, bytearray, memoryview)):
        return np.frombuffer(pixels, dtype=np.uint8)
    pixels = np.asarray(pixels)
    if pixels.dtype != np.uint8:
        raise FormatError(
            f"pixel data must have 8-bit channels, got dtype {pixels.dtype}"
        )
    return pixels.reshape(-1)


def pack(pixels):
    """Pack interleaved RGBA bytes into 32-bit words.

    Parameters
    ----------
    pixels : bytes-like or ndarray of uint8
        Interleaved ``R, G, B, A`` channel values. Arrays of any shape are
        flattened in C order.

    Returns
    -------
    words : ndarray of uint32
        One packed word per pixel, shape ``(len(pixels) // 4,)``.

    Raises
    ------
    FormatError
        If the number of bytes is not a multiple of 4 or the channels are not
        8-bit.
    """
    px = _as_byte_array(pixels)
    if px.size % 4:
        raise FormatError(
            f"RGBA data length must be a multiple of 4, got {px.size}"
        )
    rgba = px.reshape(-1, 4).astype(np.uint32)
    return (
        (rgba[:, 3] << 24)
        | (rgba[:, 0] << 16)
        | (rgba[:, 1] << 8)
        | rgba[:, 2]
    )


def unpack(words, count=None):
    """Unpack 32-bit words into interleaved RGBA bytes.

    Parameters
    ----------
    words : array-like of uint32
        Packed pixels. Multi-dimensional arrays are flattened in C order.
    count : int, optional
        Number of pixels to unpack. Defaults to all of `words`.

    Returns
    -------
    pixels : ndarray of uint8
        Array of length ``4 * count``.
    """
    words = np.asarray(words, dtype=np.uint32).reshape(-1)
    if count is None:
        count = words.size
    elif count < 0 or count > words.size:
        raise ValueError(
            f"count must be in the range [0, {words.size}], got {count}"
        )
    words = words[:count]
    out = np.empty((count, 4), dtype=np.uint8)
    for channel, shift in enumerate(_CHANNEL_SHIFTS):
        out[:, channel] = (words >> shift) & 0xFF
    return out.reshape(-1)


def extract_channel(word, channel):
    """Return one 8-bit channel of a packed word.

    Parameters
    ----------
    word : int
        Packed pixel.
    channel : {0, 1, 2, 3}
        Channel index: 0 = red, 1 = green, 2 = blue, 3 = alpha.
    """
    if channel not in (0, 1, 2, 3):
        raise ValueError(f"channel must be one of 0, 1, 2, 3, got {channel}")
    return (int(word) >> _CHANNEL_SHIFTS[channel]) & 0xFF


def rgb_to_rgba(rgb, alpha=255):
    """Append a constant alpha channel to an ``(..., 3)`` uint8 array."""
    rgb = np.asarray(rgb)
    if rgb.dtype != np.uint8 or rgb.shape[-1] != 3:
        raise FormatError(
            "expected an RGB image with 3 uint8 channels, got shape "
            f"{rgb.shape} and dtype {rgb.dtype}"
        )
    rgba = np.empty(rgb.shape[:-1] + (4,), dtype=np.uint8)
    rgba[..., :3] = rgb
    rgba[..., 3] = alpha
    return rgba


def rgba_to_rgb(rgba):
    """Drop the alpha channel of an ``(..., 4)`` uint8 array."""
    rgba = np.asarray(rgba)
    if rgba.shape[-1] != 4:
        raise FormatError(
            f"expected an RGBA image with 4 channels, got shape {rgba.shape}"
        )
    return np.ascontiguousarray(rgba[..., :3])
