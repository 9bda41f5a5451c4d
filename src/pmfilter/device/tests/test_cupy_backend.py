# SPDX-FileCopyrightText: Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

import numpy as np
import pytest
from numpy.testing import assert_array_equal

cp = pytest.importorskip("cupy")

from pmfilter import CompileError, DispatchError, NoDeviceError  # noqa: E402
from pmfilter.device import (  # noqa: E402
    CupyBackend,
    DeviceCapabilities,
    DeviceHandle,
    PlatformHandle,
    TileScheduler,
    run_tiled,
)
from pmfilter.restoration import (  # noqa: E402
    ProcessingParams,
    diffuse_sequential,
)
from pmfilter.util import unpack  # noqa: E402

try:
    _ndevices = cp.cuda.runtime.getDeviceCount()
except cp.cuda.runtime.CUDARuntimeError:
    _ndevices = 0

requires_device = pytest.mark.skipif(_ndevices == 0, reason="no CUDA device")


def _random_packed(h, w, seed=0):
    rng = np.random.default_rng(seed)
    return rng.integers(0, 2**32, size=(h, w), dtype=np.uint32)


@requires_device
def test_enumeration():
    backend = CupyBackend()
    (platform,) = backend.list_platforms()
    assert platform.name.startswith("CUDA ")
    devices = backend.list_devices(platform)
    assert len(devices) == _ndevices
    device, caps = devices[0]
    assert isinstance(caps, DeviceCapabilities)
    assert caps.max_tile_extent_x >= 256
    assert caps.global_memory_bytes > 0
    assert device.name


@requires_device
def test_quadric_matches_host_exactly():
    packed = _random_packed(67, 45, seed=3)
    params = ProcessingParams(iterations=5, threshold=25, conduction="quadric")
    expected = diffuse_sequential(packed.copy(), params)
    out = run_tiled(packed.copy(), params, backend=CupyBackend())
    assert_array_equal(out, expected)


@requires_device
def test_exponential_close_to_host():
    packed = _random_packed(40, 50, seed=4)
    params = ProcessingParams(iterations=4, conduction="exponential")
    expected = unpack(diffuse_sequential(packed.copy(), params)).astype(int)
    out = unpack(run_tiled(packed.copy(), params, backend=CupyBackend()))
    # the device exp() may differ from the host by an ulp
    assert np.abs(out.astype(int) - expected).max() <= 1


@requires_device
def test_profiled_run():
    scheduler = TileScheduler(CupyBackend(), profile=True)
    scheduler.run(_random_packed(128, 128), ProcessingParams(iterations=2))
    assert scheduler.dispatch_count == 2
    assert scheduler.elapsed_ms > 0


@requires_device
def test_compile_error_has_log():
    backend = CupyBackend()
    (platform,) = backend.list_platforms()
    device, _ = backend.list_devices(platform)[0]
    with pytest.raises(CompileError) as excinfo:
        backend.compile(device, 'extern "C" __global__ void perona_malik(')
    assert excinfo.value.log


@requires_device
@pytest.mark.parametrize("conduction", ["quadric", "exponential"])
def test_fortran_ordered_input(conduction):
    packed = _random_packed(33, 21, seed=5)
    params = ProcessingParams(iterations=3, conduction=conduction)
    expected = unpack(diffuse_sequential(packed.copy(), params)).astype(int)
    out = run_tiled(np.asfortranarray(packed), params, backend=CupyBackend())
    diff = np.abs(unpack(np.ascontiguousarray(out)).astype(int) - expected)
    assert diff.max() <= (0 if conduction == "quadric" else 1)


def _runtime_error():
    # cudaErrorNoDevice
    return cp.cuda.runtime.CUDARuntimeError(100)


class _FailingDevice:
    def __init__(self, index):
        self.index = index

    def __enter__(self):
        raise _runtime_error()

    def __exit__(self, *exc_info):
        return False


@pytest.fixture
def failing_device(monkeypatch):
    monkeypatch.setattr(cp.cuda, "Device", _FailingDevice)
    platform = PlatformHandle(0, "CUDA")
    return DeviceHandle(0, "gpu", platform)


def test_device_selection_errors_are_translated(failing_device):
    backend = CupyBackend()
    host = np.zeros((4, 4), dtype=np.uint32)
    with pytest.raises(CompileError):
        backend.compile(failing_device)
    with pytest.raises(DispatchError, match="allocation"):
        backend.allocate_buffer(failing_device, host.nbytes, host)


def test_property_query_errors_are_translated(monkeypatch):
    def get_device_properties(index):
        raise _runtime_error()

    monkeypatch.setattr(cp.cuda.runtime, "getDeviceCount", lambda: 1)
    monkeypatch.setattr(
        cp.cuda.runtime, "getDeviceProperties", get_device_properties
    )
    with pytest.raises(NoDeviceError, match="device 0"):
        CupyBackend().list_devices(PlatformHandle(0, "CUDA"))


def test_timing_errors_are_translated(monkeypatch):
    from pmfilter.device._cupy import _CupyTask

    def get_elapsed_time(start, end):
        raise _runtime_error()

    monkeypatch.setattr(cp.cuda, "get_elapsed_time", get_elapsed_time)
    task = _CupyTask(start=object(), end=object())
    with pytest.raises(DispatchError, match="timing"):
        CupyBackend().elapsed_time(task)
