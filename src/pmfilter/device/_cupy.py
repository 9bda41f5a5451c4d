# SPDX-FileCopyrightText: Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""CUDA implementation of the device backend contract using CuPy."""

import os
from dataclasses import dataclass

import cupy as cp
import numpy as np

from pmfilter._errors import (
    CapacityError,
    CompileError,
    DispatchError,
    NoDeviceError,
)

from ._backend import (
    KERNEL_NAME,
    KERNEL_SOURCE_PATH,
    DeviceBackend,
    DeviceCapabilities,
    DeviceHandle,
    PlatformHandle,
)

__all__ = ["CupyBackend"]

# threads per block of one dispatch (x, y, z)
_BLOCK = (16, 16, 1)

# keep multiply-add rounding identical to the host stencil
_OPTIONS = ("--fmad=false",)

_CUDA_ERRORS = (cp.cuda.runtime.CUDARuntimeError, cp.cuda.driver.CUDADriverError)


def _div_ceil(a, b):
    """Integer division rounding up."""
    return (a + b - 1) // b


@cp.memoize(for_each_device=True)
def _get_builtin_kernel():
    """Compile the bundled diffusion kernel once per device."""
    with open(KERNEL_SOURCE_PATH) as f:
        source = f.read()
    module = cp.RawModule(code=source, options=_OPTIONS)
    return module.get_function(KERNEL_NAME)


@dataclass
class _CupyProgram:
    device: DeviceHandle
    kernel: object


@dataclass
class _CupyTask:
    start: object
    end: object


class CupyBackend(DeviceBackend):
    """Backend dispatching the diffusion kernel to CUDA devices.

    The single platform is the CUDA runtime CuPy is linked against; its
    devices are the visible GPUs. The maximum tile extent of a device is its
    maximum number of threads per block along each axis, and its capacity is
    the total global memory.
    """

    def list_platforms(self):
        try:
            cp.cuda.runtime.getDeviceCount()
            version = cp.cuda.runtime.runtimeGetVersion()
        except _CUDA_ERRORS:
            return []
        name = f"CUDA {version // 1000}.{version % 1000 // 10}"
        return [PlatformHandle(0, name)]

    def list_devices(self, platform):
        try:
            count = cp.cuda.runtime.getDeviceCount()
        except _CUDA_ERRORS:
            return []
        devices = []
        for index in range(count):
            try:
                props = cp.cuda.runtime.getDeviceProperties(index)
            except _CUDA_ERRORS as exc:
                raise NoDeviceError(
                    f"cannot query CUDA device {index}: {exc}"
                ) from exc
            name = props["name"]
            if isinstance(name, bytes):
                name = name.decode()
            caps = DeviceCapabilities(
                max_tile_extent_x=int(props["maxThreadsPerBlock"]),
                max_tile_extent_y=int(props["maxThreadsPerBlock"]),
                global_memory_bytes=int(props["totalGlobalMem"]),
            )
            devices.append((DeviceHandle(index, name, platform), caps))
        return devices

    def compile(self, device, source=None, *, binary=None):
        if source is not None and binary is not None:
            raise ValueError("pass either source or binary, not both")
        try:
            with cp.cuda.Device(device.index):
                if binary is not None:
                    module = cp.RawModule(path=os.fspath(binary))
                    kernel = module.get_function(KERNEL_NAME)
                elif source is not None:
                    module = cp.RawModule(code=source, options=_OPTIONS)
                    kernel = module.get_function(KERNEL_NAME)
                else:
                    kernel = _get_builtin_kernel()
        except cp.cuda.compiler.CompileException as exc:
            raise CompileError(
                "failed to build diffusion program", log=exc.get_message()
            ) from exc
        except _CUDA_ERRORS as exc:
            raise CompileError(
                "failed to load diffusion program", log=str(exc)
            ) from exc
        return _CupyProgram(device=device, kernel=kernel)

    def allocate_buffer(self, device, nbytes, host_data):
        try:
            with cp.cuda.Device(device.index) as dev:
                try:
                    # the kernel indexes rows as x + y * w
                    return cp.ascontiguousarray(host_data, dtype=cp.uint32)
                except cp.cuda.memory.OutOfMemoryError as exc:
                    raise CapacityError(nbytes, dev.mem_info[0]) from exc
        except _CUDA_ERRORS as exc:
            raise DispatchError(f"buffer allocation failed: {exc}") from exc

    def enqueue(self, program, src, dst, params, *, profile=False):
        tile = params.tile
        grid = (
            _div_ceil(tile.extent_x, _BLOCK[0]),
            _div_ceil(tile.extent_y, _BLOCK[1]),
            1,
        )
        args = (
            src,
            dst,
            np.float64(params.threshold),
            np.int32(params.conduction),
            np.float64(params.lambda_),
            np.int32(params.width),
            np.int32(params.height),
            np.int32(tile.offset_x),
            np.int32(tile.offset_y),
            np.int32(tile.extent_x),
            np.int32(tile.extent_y),
        )
        try:
            with cp.cuda.Device(program.device.index):
                start = None
                if profile:
                    start = cp.cuda.Event()
                    start.record()
                program.kernel(grid, _BLOCK, args)
                end = cp.cuda.Event(disable_timing=not profile)
                end.record()
        except _CUDA_ERRORS as exc:
            raise DispatchError(f"kernel launch failed: {exc}") from exc
        return _CupyTask(start=start, end=end)

    def wait(self, task):
        try:
            task.end.synchronize()
        except _CUDA_ERRORS as exc:
            raise DispatchError(f"kernel execution failed: {exc}") from exc

    def elapsed_time(self, task):
        if task.start is None:
            raise DispatchError("task was not enqueued with profiling enabled")
        try:
            return cp.cuda.get_elapsed_time(task.start, task.end)
        except _CUDA_ERRORS as exc:
            raise DispatchError(f"event timing failed: {exc}") from exc

    def read_buffer(self, buffer):
        try:
            return cp.asnumpy(buffer)
        except _CUDA_ERRORS as exc:
            raise DispatchError(f"buffer readback failed: {exc}") from exc
