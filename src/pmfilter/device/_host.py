# SPDX-FileCopyrightText: Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""NumPy implementation of the device backend contract.

Dispatches execute synchronously on the host with the vectorized stencil of
:func:`pmfilter.restoration.diffuse_region`. The backend is useful as a
portable fallback and as a stand-in accelerator whose capabilities can be
chosen freely, e.g. to exercise tiling on small images.
"""

import logging
import numbers
import re
import time
from dataclasses import dataclass

import numpy as np

from pmfilter._errors import CompileError, DispatchError
from pmfilter.restoration import Conduction, diffuse_region

from ._backend import (
    KERNEL_NAME,
    DeviceBackend,
    DeviceCapabilities,
    DeviceHandle,
    PlatformHandle,
)

__all__ = ["HostBackend"]

logger = logging.getLogger(__name__)

_ENTRY_RE = re.compile(r"\b" + KERNEL_NAME + r"\s*\(")


@dataclass
class _HostProgram:
    device: DeviceHandle
    kernel: object


@dataclass
class _HostTask:
    profiled: bool
    elapsed_ns: int = 0


class HostBackend(DeviceBackend):
    """Backend running the stencil with NumPy on the calling thread.

    Parameters
    ----------
    max_tile_extent : int or tuple of int, optional
        Maximum tile extent ``(x, y)`` reported for the single host device.
        A single int applies to both axes. Default is 1024.
    global_memory_bytes : int, optional
        Reported device memory. Defaults to 16 GiB.
    """

    platform_name = "Host"
    device_name = "NumPy"

    def __init__(self, max_tile_extent=1024, global_memory_bytes=16 << 30):
        if isinstance(max_tile_extent, numbers.Integral):
            max_tile_extent = (max_tile_extent, max_tile_extent)
        self.capabilities = DeviceCapabilities(
            max_tile_extent_x=int(max_tile_extent[0]),
            max_tile_extent_y=int(max_tile_extent[1]),
            global_memory_bytes=int(global_memory_bytes),
        )
        self._platform = PlatformHandle(0, self.platform_name)
        self._device = DeviceHandle(0, self.device_name, self._platform)

    def list_platforms(self):
        return [self._platform]

    def list_devices(self, platform):
        if platform != self._platform:
            return []
        return [(self._device, self.capabilities)]

    def compile(self, device, source=None, *, binary=None):
        if source is not None and binary is not None:
            raise ValueError("pass either source or binary, not both")
        if binary is not None:
            raise CompileError(
                "the host backend cannot load precompiled binaries",
                log=f"binary: {binary}",
            )
        # the host program is built in; a supplied source only has to
        # declare the expected entry point
        if source is not None and not _ENTRY_RE.search(source):
            raise CompileError(
                "failed to build diffusion program",
                log=f"error: entry point '{KERNEL_NAME}' not found",
            )
        if source is not None:
            logger.warning(
                "the host backend ignores the supplied kernel source and runs "
                "its built-in NumPy stencil"
            )
        return _HostProgram(device=device, kernel=diffuse_region)

    def allocate_buffer(self, device, nbytes, host_data):
        if host_data.nbytes != nbytes:
            raise ValueError(
                f"host data has {host_data.nbytes} bytes, expected {nbytes}"
            )
        return np.array(host_data, dtype=np.uint32, copy=True)

    def enqueue(self, program, src, dst, params, *, profile=False):
        tile = params.tile
        start = time.perf_counter_ns() if profile else 0
        try:
            program.kernel(
                src,
                dst,
                params.threshold,
                params.lambda_,
                Conduction(params.conduction),
                offset=(tile.offset_x, tile.offset_y),
                extent=(tile.extent_x, tile.extent_y),
            )
        except (ValueError, IndexError) as exc:
            raise DispatchError(f"host dispatch failed: {exc}") from exc
        task = _HostTask(profiled=profile)
        if profile:
            task.elapsed_ns = time.perf_counter_ns() - start
        return task

    def wait(self, task):
        # dispatches complete before enqueue returns
        return None

    def elapsed_time(self, task):
        if not task.profiled:
            raise DispatchError("task was not enqueued with profiling enabled")
        return task.elapsed_ns / 1e6

    def read_buffer(self, buffer):
        return buffer.copy()
