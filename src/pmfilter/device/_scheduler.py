# SPDX-FileCopyrightText: Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Tiled dispatch of the diffusion stencil to a compute backend.

The image is split into tiles no larger than the device's maximum dispatch
extent. Every pass dispatches all tiles in row-major order, one at a time:
each dispatch is only enqueued after the previous one has completed, since
all tiles share the same device buffers. With double buffering (the
default) a pass reads one buffer and writes the other, so the result does
not depend on the tile shape and equals the sequential Jacobi result. With
a single buffer the stencil reads and writes in place, reproducing the
order-dependent behavior of the sequential Gauss-Seidel sweep only up to
the tile granularity.
"""

import enum
import logging
import math

import numpy as np

from pmfilter._errors import CapacityError, NoDeviceError, NoPlatformError

from ._backend import Tile, TileParams

__all__ = [
    "SchedulerState",
    "TileScheduler",
    "list_devices",
    "list_platforms",
    "plan_tiles",
    "run_tiled",
    "tile_grid",
]

logger = logging.getLogger(__name__)


class SchedulerState(enum.Enum):
    IDLE = "idle"
    PLATFORM_SELECTED = "platform selected"
    DEVICE_SELECTED = "device selected"
    PROGRAM_BUILT = "program built"
    BUFFER_ALLOCATED = "buffer allocated"
    DISPATCHING = "dispatching"
    READ_BACK = "read back"
    DONE = "done"
    FAILED = "failed"


def tile_grid(width, height, capabilities):
    """Tile extent and number of tiles along each axis.

    Returns
    -------
    tile_extent : tuple of int
        ``(min(width, max_x), min(height, max_y))``.
    parts : tuple of int
        Number of tiles ``(ceil(width / extent_x), ceil(height / extent_y))``.
    """
    extent_x = min(width, capabilities.max_tile_extent_x)
    extent_y = min(height, capabilities.max_tile_extent_y)
    parts_x = math.ceil(width / extent_x) if width else 0
    parts_y = math.ceil(height / extent_y) if height else 0
    return (extent_x, extent_y), (parts_x, parts_y)


def plan_tiles(width, height, capabilities):
    """Dispatch regions of one pass, in row-major order.

    Each grid cell is clipped to the image interior; cells with no interior
    pixels are dropped.

    Parameters
    ----------
    width, height : int
        Image size in pixels.
    capabilities : DeviceCapabilities
        Limits of the target device.

    Returns
    -------
    tiles : list of Tile
    """
    (extent_x, extent_y), (parts_x, parts_y) = tile_grid(
        width, height, capabilities
    )
    tiles = []
    for py in range(parts_y):
        offset_y = py * extent_y
        y0 = max(offset_y, 1)
        y1 = min(offset_y + extent_y, height - 1)
        for px in range(parts_x):
            offset_x = px * extent_x
            x0 = max(offset_x, 1)
            x1 = min(offset_x + extent_x, width - 1)
            if x0 < x1 and y0 < y1:
                tiles.append(Tile(x0, y0, x1 - x0, y1 - y0))
    return tiles


def _pick(items, index, kind):
    if index is None:
        return items[0]
    if 0 <= index < len(items):
        return items[index]
    logger.warning(
        "%s index %d is out of range [0, %d), using 0",
        kind,
        index,
        len(items),
    )
    return items[0]


def list_platforms(backend):
    """Names of the platforms of `backend`, in index order."""
    return [platform.name for platform in backend.list_platforms()]


def list_devices(backend, platform_index=0):
    """``(name, DeviceCapabilities)`` of the devices of one platform."""
    platforms = backend.list_platforms()
    if not 0 <= platform_index < len(platforms):
        raise ValueError(
            f"platform index {platform_index} is out of range "
            f"[0, {len(platforms)})"
        )
    return [
        (device.name, caps)
        for device, caps in backend.list_devices(platforms[platform_index])
    ]


class TileScheduler:
    """Run the diffusion on a device, one tile dispatch at a time.

    A scheduler performs a single run; its final `state` is either
    ``SchedulerState.DONE`` or ``SchedulerState.FAILED``.

    Parameters
    ----------
    backend : DeviceBackend
        Compute backend to dispatch to.
    platform_index, device_index : int, optional
        Platform and device to use. Out-of-range indices fall back to the
        first entry. Default is the first platform and device.
    profile : bool, optional
        Capture device timestamps around every dispatch and accumulate the
        total in `elapsed_ms`. Does not change the result.
    source : str, optional
        Program text replacing the backend's built-in kernel.
    binary : str or os.PathLike, optional
        Precompiled program replacing the backend's built-in kernel.
    double_buffer : bool, optional
        Read each pass from one buffer and write it to another (default).
        When False, a single buffer is updated in place.

    Attributes
    ----------
    state : SchedulerState
    failure : Exception or None
        The error that ended a failed run.
    elapsed_ms : float
        Total profiled device time in milliseconds.
    dispatch_count : int
        Number of dispatches enqueued so far.
    progress : tuple of int or None
        ``(iteration, tile index)`` of the last dispatch.
    platform, device, capabilities, tiles
        Selections made during the run.
    """

    def __init__(
        self,
        backend,
        *,
        platform_index=None,
        device_index=None,
        profile=False,
        source=None,
        binary=None,
        double_buffer=True,
    ):
        self.backend = backend
        self.platform_index = platform_index
        self.device_index = device_index
        self.profile = profile
        self.source = source
        self.binary = binary
        self.double_buffer = double_buffer

        self.state = SchedulerState.IDLE
        self.failure = None
        self.elapsed_ms = 0.0
        self.dispatch_count = 0
        self.progress = None
        self.platform = None
        self.device = None
        self.capabilities = None
        self.tiles = []

    def _select_platform(self):
        platforms = self.backend.list_platforms()
        if not platforms:
            raise NoPlatformError("no compute platforms were found")
        self.platform = _pick(platforms, self.platform_index, "platform")
        logger.info("selected platform: %s", self.platform.name)
        self.state = SchedulerState.PLATFORM_SELECTED

    def _select_device(self):
        devices = self.backend.list_devices(self.platform)
        if not devices:
            raise NoDeviceError(
                f"no devices were found on platform {self.platform.name!r}"
            )
        self.device, self.capabilities = _pick(
            devices, self.device_index, "device"
        )
        logger.info("selected device: %s", self.device.name)
        self.state = SchedulerState.DEVICE_SELECTED

    def _complete(self, task):
        self.backend.wait(task)
        if self.profile:
            self.elapsed_ms += self.backend.elapsed_time(task)

    def run(self, packed, params):
        """Filter `packed` in place.

        Parameters
        ----------
        packed : ndarray of uint32, shape (h, w)
            Packed RGBA image. It must not be modified by the caller while
            the run is in progress.
        params : ProcessingParams
            Diffusion parameters.

        Returns
        -------
        packed : ndarray of uint32
            The same array, holding the result of the last pass.

        Raises
        ------
        NoPlatformError, NoDeviceError, CompileError, CapacityError, DispatchError
            On any backend failure. `packed` is left unmodified.
        """
        if self.state is not SchedulerState.IDLE:
            raise RuntimeError(
                f"scheduler already ran (state: {self.state.value}); "
                "create a new TileScheduler for another run"
            )
        if not isinstance(packed, np.ndarray) or packed.dtype != np.uint32:
            raise TypeError("packed image must be a uint32 numpy.ndarray")
        if packed.ndim != 2:
            raise ValueError(
                f"packed image must be 2D (height, width), got shape "
                f"{packed.shape}"
            )
        height, width = packed.shape
        backend = self.backend
        program = None
        buffers = []
        try:
            self._select_platform()
            self._select_device()
            program = backend.compile(
                self.device, self.source, binary=self.binary
            )
            self.state = SchedulerState.PROGRAM_BUILT

            nbytes = packed.nbytes
            required = nbytes * (2 if self.double_buffer else 1)
            available = self.capabilities.global_memory_bytes
            if required > available:
                raise CapacityError(required, available)
            buffers.append(backend.allocate_buffer(self.device, nbytes, packed))
            if self.double_buffer:
                buffers.append(
                    backend.allocate_buffer(self.device, nbytes, packed)
                )
            self.state = SchedulerState.BUFFER_ALLOCATED

            self.tiles = plan_tiles(width, height, self.capabilities)
            (extent_x, extent_y), _ = tile_grid(
                width, height, self.capabilities
            )
            logger.info("tile size: %d, %d", extent_x, extent_y)
            logger.info("image size: %d, %d", width, height)

            self.state = SchedulerState.DISPATCHING
            front, back = buffers[0], buffers[-1]
            task = None
            for iteration in range(params.iterations):
                for index, tile in enumerate(self.tiles):
                    if task is not None:
                        self._complete(task)
                    self.progress = (iteration, index)
                    logger.debug(
                        "iteration %d, tile %d at (%d, %d)",
                        iteration,
                        index,
                        tile.offset_x,
                        tile.offset_y,
                    )
                    tile_params = TileParams(
                        tile=tile,
                        width=width,
                        height=height,
                        threshold=params.threshold,
                        conduction=int(params.conduction),
                        lambda_=params.lambda_,
                    )
                    task = backend.enqueue(
                        program, front, back, tile_params, profile=self.profile
                    )
                    self.dispatch_count += 1
                front, back = back, front
            if task is not None:
                self._complete(task)

            self.state = SchedulerState.READ_BACK
            # after the final swap `front` holds the last pass
            result = backend.read_buffer(front)
            packed[...] = np.asarray(result, dtype=np.uint32).reshape(
                height, width
            )
            if self.profile:
                logger.info(
                    "device execution time: %.3f ms", self.elapsed_ms
                )
            self.state = SchedulerState.DONE
            return packed
        except Exception as exc:
            self.state = SchedulerState.FAILED
            self.failure = exc
            raise
        finally:
            for buffer in buffers:
                backend.release(buffer)
            if program is not None:
                backend.release(program)


def run_tiled(packed, params, *, backend=None, **kwargs):
    """Filter `packed` in place with a :class:`TileScheduler`.

    Parameters
    ----------
    packed : ndarray of uint32, shape (h, w)
        Packed RGBA image.
    params : ProcessingParams
        Diffusion parameters.
    backend : DeviceBackend, optional
        Defaults to :class:`pmfilter.device.CupyBackend`.
    **kwargs
        Forwarded to :class:`TileScheduler`.

    Returns
    -------
    packed : ndarray of uint32
    """
    if backend is None:
        from ._cupy import CupyBackend

        backend = CupyBackend()
    return TileScheduler(backend, **kwargs).run(packed, params)
