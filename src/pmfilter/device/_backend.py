# SPDX-FileCopyrightText: Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Contract between the tile scheduler and a compute backend.

A backend exposes platform/device discovery, program compilation, buffer
allocation, kernel dispatch and timed readback. The scheduler only ever
talks to this interface, so its tiling, ordering and capacity logic can be
exercised against any implementation, including the NumPy host backend.
"""

import abc
import os
from dataclasses import dataclass, field
from typing import Any

__all__ = [
    "DeviceBackend",
    "DeviceCapabilities",
    "PlatformHandle",
    "DeviceHandle",
    "Tile",
    "TileParams",
    "KERNEL_NAME",
    "KERNEL_SOURCE_PATH",
]

# entry point of the diffusion program on every backend
KERNEL_NAME = "perona_malik"

# CUDA source of the built-in diffusion kernel
KERNEL_SOURCE_PATH = os.path.join(
    os.path.dirname(__file__), "cuda", "perona_malik.cu"
)


@dataclass(frozen=True)
class DeviceCapabilities:
    """Limits of a device relevant to the scheduler."""

    max_tile_extent_x: int
    max_tile_extent_y: int
    global_memory_bytes: int

    def __post_init__(self):
        if self.max_tile_extent_x < 1 or self.max_tile_extent_y < 1:
            raise ValueError(
                "maximum tile extents must be positive, got "
                f"({self.max_tile_extent_x}, {self.max_tile_extent_y})"
            )


@dataclass(frozen=True)
class PlatformHandle:
    index: int
    name: str
    native: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class DeviceHandle:
    index: int
    name: str
    platform: PlatformHandle
    native: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class Tile:
    """One dispatch region, in pixels."""

    offset_x: int
    offset_y: int
    extent_x: int
    extent_y: int

    @property
    def size(self):
        return self.extent_x * self.extent_y


@dataclass(frozen=True)
class TileParams:
    """Arguments of one stencil dispatch."""

    tile: Tile
    width: int
    height: int
    threshold: float
    conduction: int
    lambda_: float


class DeviceBackend(abc.ABC):
    """Interface consumed by :class:`pmfilter.device.TileScheduler`.

    Handles returned by a backend are opaque to the scheduler; they are only
    passed back to the same backend. Methods report failures with the
    exceptions of :mod:`pmfilter._errors`.
    """

    @abc.abstractmethod
    def list_platforms(self):
        """Return the available platforms as a list of `PlatformHandle`."""

    @abc.abstractmethod
    def list_devices(self, platform):
        """Return ``(DeviceHandle, DeviceCapabilities)`` pairs of `platform`."""

    @abc.abstractmethod
    def compile(self, device, source=None, *, binary=None):
        """Build the diffusion program for `device`.

        Exactly one of `source` (program text) or `binary` (path to a
        precompiled module) may be given; when neither is, the backend's
        built-in program is used. Raises `CompileError` with the compiler
        log on failure.
        """

    @abc.abstractmethod
    def allocate_buffer(self, device, nbytes, host_data):
        """Allocate a device buffer of `nbytes` initialized from `host_data`."""

    @abc.abstractmethod
    def enqueue(self, program, src, dst, params, *, profile=False):
        """Enqueue one dispatch of `program` over ``params.tile``.

        Reads from buffer `src` and writes to buffer `dst`, which may be the
        same buffer. Returns a task handle.
        """

    @abc.abstractmethod
    def wait(self, task):
        """Block until `task` has completed."""

    @abc.abstractmethod
    def elapsed_time(self, task):
        """Device time of a completed profiled `task`, in milliseconds."""

    @abc.abstractmethod
    def read_buffer(self, buffer):
        """Synchronously copy `buffer` to a host ``uint32`` array."""

    def release(self, handle):  # noqa: B027
        """Release a program or buffer handle. The default does nothing."""
