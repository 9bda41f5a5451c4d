# SPDX-FileCopyrightText: Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""Perona-Malik anisotropic diffusion on the host and on CUDA devices."""

import lazy_loader as lazy

__version__ = "0.3.0"

submodules = ["device", "io", "restoration", "util"]

__getattr__, __dir__, __all__ = lazy.attach(
    __name__,
    submodules=submodules,
    submod_attrs={
        "_errors": [
            "CapacityError",
            "CompileError",
            "DeviceError",
            "DispatchError",
            "FormatError",
            "NoDeviceError",
            "NoPlatformError",
            "PMFilterError",
        ],
    },
)
__all__ += ["__version__"]
