# SPDX-FileCopyrightText: Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Perona-Malik anisotropic diffusion on packed RGBA images (host reference).

Only interior pixels are ever updated. Border pixels and the alpha channel
are carried through unchanged.
"""

import operator
import warnings
from dataclasses import dataclass

import numpy as np

from pmfilter.util import pack, rgb_to_rgba, rgba_to_rgb, unpack
from pmfilter.util._packing import _CHANNEL_SHIFTS

from ._conduction import Conduction, get_conduction

__all__ = [
    "ProcessingParams",
    "diffuse_pixel",
    "diffuse_word",
    "diffuse_region",
    "diffuse_sequential",
    "denoise_perona_malik",
]

_ALPHA_MASK = np.uint32(0xFF000000)
_UPDATE_MODES = ("jacobi", "gauss_seidel")


@dataclass(frozen=True)
class ProcessingParams:
    """Parameters of a diffusion run.

    Parameters
    ----------
    iterations : int, optional
        Number of full passes over the image (>= 0).
    threshold : float, optional
        Edge threshold of the conduction function (> 0).
    conduction : Conduction, str or int, optional
        Conduction function, either as a :class:`Conduction` member, its name
        ("quadric", "exponential") or its integer code (0, 1).
    lambda_ : float, optional
        Integration constant. The scheme is stable for
        ``0 < lambda_ <= 0.25``.
    """

    iterations: int = 16
    threshold: float = 30.0
    conduction: Conduction = Conduction.EXPONENTIAL
    lambda_: float = 0.25

    def __post_init__(self):
        try:
            iterations = operator.index(self.iterations)
        except TypeError:
            raise TypeError(
                f"iterations must be an integer, got {self.iterations!r}"
            ) from None
        if iterations < 0:
            raise ValueError(f"iterations must be >= 0, got {iterations}")
        threshold = float(self.threshold)
        if not threshold > 0:
            raise ValueError(f"threshold must be positive, got {threshold}")
        lambda_ = float(self.lambda_)
        if not lambda_ > 0:
            raise ValueError(f"lambda_ must be positive, got {lambda_}")
        if lambda_ > 0.25:
            warnings.warn(
                f"lambda_={lambda_} exceeds 0.25; the diffusion may be "
                "numerically unstable",
                stacklevel=3,
            )
        object.__setattr__(self, "iterations", iterations)
        object.__setattr__(self, "threshold", threshold)
        object.__setattr__(self, "lambda_", lambda_)
        object.__setattr__(
            self, "conduction", Conduction.coerce(self.conduction)
        )

    @property
    def conduction_func(self):
        return get_conduction(self.conduction)


def _resolve_conduction(conduction):
    if callable(conduction):
        return conduction
    return get_conduction(conduction)


def _to_byte(value):
    return min(max(int(value), 0), 255)


def diffuse_pixel(buf, x, y, channel, threshold, lambda_, conduction):
    """Diffusion update of one channel of one interior pixel.

    Parameters
    ----------
    buf : 2D indexable of packed words
        Current image as ``buf[y][x]``; a NumPy array or nested lists.
    x, y : int
        Interior pixel coordinates (``1 <= x <= w - 2``, ``1 <= y <= h - 2``).
    channel : {0, 1, 2}
        Color channel (red, green, blue).
    threshold : float
        Edge threshold of the conduction function.
    lambda_ : float
        Integration constant.
    conduction : callable, Conduction, str or int
        Conduction function or its selector.

    Returns
    -------
    value : int
        Updated channel value, truncated towards zero and clamped to
        ``[0, 255]``.
    """
    conduction = _resolve_conduction(conduction)
    shift = _CHANNEL_SHIFTS[channel]
    p = (int(buf[y][x]) >> shift) & 0xFF
    d_w = ((int(buf[y][x - 1]) >> shift) & 0xFF) - p
    d_e = ((int(buf[y][x + 1]) >> shift) & 0xFF) - p
    d_n = ((int(buf[y - 1][x]) >> shift) & 0xFF) - p
    d_s = ((int(buf[y + 1][x]) >> shift) & 0xFF) - p
    c_n = conduction(abs(d_n), threshold)
    c_s = conduction(abs(d_s), threshold)
    c_e = conduction(abs(d_e), threshold)
    c_w = conduction(abs(d_w), threshold)
    value = p + lambda_ * (c_n * d_n + c_s * d_s + c_e * d_e + c_w * d_w)
    return _to_byte(value)


def diffuse_word(buf, x, y, threshold, lambda_, conduction):
    """Return the updated packed word of interior pixel ``(x, y)``.

    The three color channels are computed from `buf` before anything is
    written; alpha is copied from the current word.
    """
    conduction = _resolve_conduction(conduction)
    r, g, b = (
        diffuse_pixel(buf, x, y, c, threshold, lambda_, conduction)
        for c in range(3)
    )
    alpha = (int(buf[y][x]) >> 24) & 0xFF
    return (alpha << 24) | (r << 16) | (g << 8) | b


def diffuse_region(
    src, dst, threshold, lambda_, conduction, *, offset=(0, 0), extent=None
):
    """Vectorized diffusion update of a rectangular region.

    Every pixel of the region is computed from `src` and written to `dst`.
    The region is clipped to the image interior. `src` and `dst` may be the
    same array: all values are computed before the region is written back.

    Parameters
    ----------
    src, dst : ndarray of uint32, shape (h, w)
        Packed input and output images.
    threshold, lambda_, conduction
        As for :func:`diffuse_pixel`.
    offset : tuple of int, optional
        ``(x, y)`` of the region's upper-left corner.
    extent : tuple of int, optional
        ``(width, height)`` of the region. Defaults to the whole image.

    Returns
    -------
    dst : ndarray of uint32
    """
    conduction = _resolve_conduction(conduction)
    h, w = src.shape
    offset_x, offset_y = offset
    if extent is None:
        extent = (w, h)
    x0 = max(offset_x, 1)
    y0 = max(offset_y, 1)
    x1 = min(offset_x + extent[0], w - 1)
    y1 = min(offset_y + extent[1], h - 1)
    if x0 >= x1 or y0 >= y1:
        return dst

    center = src[y0:y1, x0:x1]
    north = src[y0 - 1 : y1 - 1, x0:x1]
    south = src[y0 + 1 : y1 + 1, x0:x1]
    west = src[y0:y1, x0 - 1 : x1 - 1]
    east = src[y0:y1, x0 + 1 : x1 + 1]

    out = center & _ALPHA_MASK
    for shift in _CHANNEL_SHIFTS[:3]:
        p = ((center >> shift) & 0xFF).astype(np.int64)
        d_w = ((west >> shift) & 0xFF).astype(np.int64) - p
        d_e = ((east >> shift) & 0xFF).astype(np.int64) - p
        d_n = ((north >> shift) & 0xFF).astype(np.int64) - p
        d_s = ((south >> shift) & 0xFF).astype(np.int64) - p
        c_n = conduction(np.abs(d_n), threshold)
        c_s = conduction(np.abs(d_s), threshold)
        c_e = conduction(np.abs(d_e), threshold)
        c_w = conduction(np.abs(d_w), threshold)
        value = p + lambda_ * (c_n * d_n + c_s * d_s + c_e * d_e + c_w * d_w)
        value = np.clip(np.trunc(value), 0, 255).astype(np.uint32)
        out |= value << shift
    dst[y0:y1, x0:x1] = out
    return dst


def _check_packed(packed):
    if not isinstance(packed, np.ndarray) or packed.dtype != np.uint32:
        raise TypeError("packed image must be a uint32 numpy.ndarray")
    if packed.ndim != 2:
        raise ValueError(
            f"packed image must be 2D (height, width), got shape "
            f"{packed.shape}"
        )


def diffuse_sequential(packed, params, *, update="jacobi"):
    """Run the diffusion on the host, modifying `packed` in place.

    Parameters
    ----------
    packed : ndarray of uint32, shape (h, w)
        Packed RGBA image, see :func:`pmfilter.util.pack`.
    params : ProcessingParams
        Diffusion parameters.
    update : {"jacobi", "gauss_seidel"}, optional
        ``"jacobi"`` computes every pass from the complete result of the
        previous pass (double buffering); the result does not depend on the
        sweep order and matches the tiled device engine exactly.
        ``"gauss_seidel"`` sweeps the interior row by row and writes each
        pixel back into the buffer being read, so later pixels of a pass see
        already updated neighbors.

    Returns
    -------
    packed : ndarray of uint32
        The same array, after the last pass.
    """
    if update not in _UPDATE_MODES:
        raise ValueError(
            f"update must be one of {_UPDATE_MODES}, got {update!r}"
        )
    _check_packed(packed)
    threshold = params.threshold
    lambda_ = params.lambda_
    conduction = params.conduction_func
    h, w = packed.shape

    if params.iterations == 0 or h < 3 or w < 3:
        return packed

    if update == "jacobi":
        front = packed
        back = packed.copy()
        for _ in range(params.iterations):
            diffuse_region(front, back, threshold, lambda_, conduction)
            front, back = back, front
        if front is not packed:
            packed[...] = front
        return packed

    rows = packed.tolist()
    for _ in range(params.iterations):
        for y in range(1, h - 1):
            row = rows[y]
            for x in range(1, w - 1):
                row[x] = diffuse_word(rows, x, y, threshold, lambda_, conduction)
    packed[...] = np.asarray(rows, dtype=np.uint32)
    return packed


def denoise_perona_malik(
    image,
    *,
    iterations=16,
    threshold=30.0,
    conduction="exponential",
    lambda_=0.25,
    update="jacobi",
    backend=None,
    **device_kwargs,
):
    """Edge-preserving smoothing by Perona-Malik anisotropic diffusion.

    Parameters
    ----------
    image : ndarray of uint8, shape (h, w, 3) or (h, w, 4)
        RGB or RGBA input image.
    iterations : int, optional
        Number of diffusion passes. Default is 16.
    threshold : float, optional
        Edge threshold. Gradients well above it are preserved as edges.
        Default is 30.
    conduction : {"exponential", "quadric"}, optional
        Conduction function. "quadric" favors wide regions over smaller
        ones, "exponential" favors high-contrast edges over low-contrast
        ones. Default is "exponential".
    lambda_ : float, optional
        Integration constant, stable for ``0 < lambda_ <= 0.25``.
    update : {"jacobi", "gauss_seidel"}, optional
        Update semantics, see :func:`diffuse_sequential`. Only "jacobi" is
        independent of how the image is tiled on a device.

    Other Parameters
    ----------------
    backend : pmfilter.device.DeviceBackend, optional
        When given, the image is processed by a
        :class:`pmfilter.device.TileScheduler` on this backend instead of
        the sequential host engine.
    **device_kwargs
        Forwarded to :func:`pmfilter.device.run_tiled` (``platform_index``,
        ``device_index``, ``profile``, ``source``, ``binary``).

    Returns
    -------
    out : ndarray of uint8
        Filtered image with the shape of `image`. Border pixels and alpha
        are unchanged.

    Examples
    --------
    >>> import numpy as np
    >>> from pmfilter.restoration import denoise_perona_malik
    >>> rng = np.random.default_rng(0)
    >>> img = rng.integers(0, 256, size=(64, 64, 3), dtype=np.uint8)
    >>> out = denoise_perona_malik(img, iterations=4, threshold=20)
    >>> out.shape
    (64, 64, 3)
    """
    image = np.asarray(image)
    if image.ndim != 3 or image.shape[-1] not in (3, 4):
        raise ValueError(
            "image must have shape (height, width, 3) or (height, width, 4), "
            f"got {image.shape}"
        )
    params = ProcessingParams(
        iterations=iterations,
        threshold=threshold,
        conduction=conduction,
        lambda_=lambda_,
    )
    h, w, nchannels = image.shape
    rgba = rgb_to_rgba(image) if nchannels == 3 else image
    packed = pack(rgba).reshape(h, w)

    if backend is None:
        if device_kwargs:
            raise TypeError(
                "device keyword arguments require a backend: "
                f"{sorted(device_kwargs)}"
            )
        diffuse_sequential(packed, params, update=update)
    else:
        from pmfilter.device import run_tiled

        if update not in _UPDATE_MODES:
            raise ValueError(
                f"update must be one of {_UPDATE_MODES}, got {update!r}"
            )
        run_tiled(
            packed,
            params,
            backend=backend,
            double_buffer=update == "jacobi",
            **device_kwargs,
        )

    out = unpack(packed).reshape(h, w, 4)
    return rgba_to_rgb(out) if nchannels == 3 else out
