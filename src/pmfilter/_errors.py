# SPDX-FileCopyrightText: Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""Exceptions raised by pmfilter.

None of these are retried anywhere in the package. They propagate to the
caller unchanged after any device resources held by the failing run have
been released.
"""

__all__ = [
    "PMFilterError",
    "FormatError",
    "DeviceError",
    "NoPlatformError",
    "NoDeviceError",
    "CompileError",
    "CapacityError",
    "DispatchError",
]


class PMFilterError(Exception):
    """Base class of all pmfilter errors."""


class FormatError(PMFilterError, ValueError):
    """Malformed image header, channel depth or pixel buffer length."""


class DeviceError(PMFilterError, RuntimeError):
    """Base class of failures reported while running on a compute device."""


class NoPlatformError(DeviceError):
    """No compute platform is available."""


class NoDeviceError(DeviceError):
    """The selected platform exposes no devices."""


class CompileError(DeviceError):
    """The diffusion program failed to build.

    Parameters
    ----------
    message : str
        Short description of the failure.
    log : str, optional
        Diagnostic output of the backend compiler.
    """

    def __init__(self, message, log=""):
        super().__init__(message)
        self.log = log

    def __str__(self):
        msg = super().__str__()
        if self.log:
            return f"{msg}\n{self.log}"
        return msg


class CapacityError(DeviceError):
    """The image buffers do not fit into the device global memory."""

    def __init__(self, required, available):
        super().__init__(
            f"image requires {required} bytes of device memory, but only "
            f"{available} bytes are available"
        )
        self.required = required
        self.available = available


class DispatchError(DeviceError):
    """The backend failed while enqueueing, waiting on or reading back work."""
