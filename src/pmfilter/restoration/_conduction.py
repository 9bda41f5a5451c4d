# SPDX-FileCopyrightText: Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Edge-stopping (conduction) functions of Perona-Malik diffusion.

Both functions accept Python scalars as well as NumPy arrays and evaluate
the same floating point expression in either case, so scalar and vectorized
code paths produce bit-identical weights.

References
----------
.. [1] P. Perona and J. Malik, "Scale-space and edge detection using
       anisotropic diffusion," IEEE Transactions on Pattern Analysis and
       Machine Intelligence, vol. 12, no. 7, pp. 629-639, 1990.
       :DOI:`10.1109/34.56205`
"""

import enum

import numpy as np

__all__ = ["Conduction", "quadric", "exponential", "get_conduction"]


class Conduction(enum.IntEnum):
    """Conduction function selector.

    The integer values are the codes passed to the device kernel.
    """

    QUADRIC = 0
    EXPONENTIAL = 1

    @classmethod
    def coerce(cls, value):
        """Convert a member, a name or an integer code into a member."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls[value.upper()]
            except KeyError:
                pass
        elif isinstance(value, (int, np.integer)) and not isinstance(
            value, bool
        ):
            try:
                return cls(int(value))
            except ValueError:
                pass
        valid = [m.name.lower() for m in cls] + [int(m) for m in cls]
        raise ValueError(
            f"conduction must be one of {valid}, got {value!r}"
        )


def quadric(gradient, threshold):
    """Quadric conduction ``1 / (1 + (gradient / threshold)**2)``.

    Favors wide regions over smaller ones.

    Parameters
    ----------
    gradient : float or ndarray
        Absolute gradient magnitude (>= 0).
    threshold : float
        Edge threshold (> 0).

    Returns
    -------
    coefficient : float or ndarray
        Value in ``(0, 1]``, equal to 1 where `gradient` is 0.
    """
    ratio = gradient / threshold
    return 1.0 / (1.0 + ratio * ratio)


def exponential(gradient, threshold):
    """Exponential conduction ``exp(-(gradient / threshold)**2)``.

    Favors high-contrast edges over low-contrast ones. Parameters and
    return value are as for :func:`quadric`.
    """
    ratio = gradient / threshold
    return np.exp(-(ratio * ratio))


_CONDUCTION_FUNCS = {
    Conduction.QUADRIC: quadric,
    Conduction.EXPONENTIAL: exponential,
}


def get_conduction(kind):
    """Return the conduction function for `kind`.

    `kind` may be a :class:`Conduction` member, its name or its integer code.
    """
    return _CONDUCTION_FUNCS[Conduction.coerce(kind)]
