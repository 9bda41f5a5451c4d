# SPDX-FileCopyrightText: Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Command line front end for Perona-Malik filtering of PPM images.

Usage:
    pmfilter [-i N] [-t T] [-f quadric|exponential] [-p P] [-d D]
             [-r sequential|device|both] [-k kernel.cu] source.ppm dest.ppm
    pmfilter --list-platforms
    pmfilter --list-devices PLATFORM
"""

import argparse
import logging
import os
import sys
import time

import numpy as np

from pmfilter._errors import NoPlatformError, PMFilterError
from pmfilter.device import (
    TileScheduler,
    list_devices,
    list_platforms,
)
from pmfilter.io import imread, imsave
from pmfilter.restoration import ProcessingParams, diffuse_sequential
from pmfilter.util import pack, rgb_to_rgba, unpack

logger = logging.getLogger(__name__)

REPORT_HEADER = (
    "| platform & device | iterations | width x height, px | time, ms |\n"
    "|-------------------|------------|--------------------|----------|\n"
)


def _conduction_arg(value):
    return int(value) if value.isdigit() else value


def build_parser():
    parser = argparse.ArgumentParser(
        prog="pmfilter",
        description="GPU powered Perona-Malik anisotropic filter",
        epilog="example: pmfilter -i 16 -t 30 -f exponential in.ppm out.ppm",
    )
    parser.add_argument("source", nargs="?", help="input PPM image")
    parser.add_argument("destination", nargs="?", help="output PPM image")
    parser.add_argument(
        "-i", "--iterations", type=int, default=16, help="number of passes"
    )
    parser.add_argument(
        "-t",
        "--threshold",
        type=float,
        default=30.0,
        help="conduction function threshold for edge enhancement",
    )
    parser.add_argument(
        "-f",
        "--conduction",
        type=_conduction_arg,
        default="exponential",
        help=(
            "conduction function: quadric (0, wide regions over smaller "
            "ones) or exponential (1, high-contrast edges over low-contrast)"
        ),
    )
    parser.add_argument(
        "--lambda",
        dest="lambda_",
        type=float,
        default=0.25,
        help="integration constant (stable for values up to 0.25)",
    )
    parser.add_argument(
        "-r",
        "--mode",
        choices=["sequential", "device", "both"],
        default="device",
        help="run mode",
    )
    parser.add_argument(
        "--update",
        choices=["jacobi", "gauss_seidel"],
        default="jacobi",
        help="double-buffered (jacobi) or in-place (gauss_seidel) updates",
    )
    parser.add_argument(
        "--backend",
        choices=["cuda", "host"],
        default="cuda",
        help="device backend",
    )
    parser.add_argument("-p", "--platform", type=int, help="platform index")
    parser.add_argument("-d", "--device", type=int, help="device index")
    kernel = parser.add_mutually_exclusive_group()
    kernel.add_argument("-k", "--kernel", help="kernel source file")
    kernel.add_argument("--binary", help="precompiled kernel module")
    parser.add_argument(
        "--profile", action="store_true", help="measure execution time"
    )
    parser.add_argument(
        "--report",
        metavar="PATH",
        help="append profiling results to a markdown table",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="verbose output"
    )
    parser.add_argument(
        "--list-platforms", action="store_true", help="show platform list"
    )
    parser.add_argument(
        "--list-devices",
        type=int,
        metavar="PLATFORM",
        help="show the device list of a platform",
    )
    return parser


def _make_backend(name):
    if name == "host":
        from pmfilter.device import HostBackend

        return HostBackend()
    try:
        from pmfilter.device import CupyBackend
    except ImportError as exc:
        raise NoPlatformError(
            "the cuda backend requires CuPy; install pmfilter[cuda] or use "
            "--backend host"
        ) from exc
    return CupyBackend()


def append_report(path, label, iterations, width, height, time_ms):
    """Append one row to a markdown timing table, writing the header first."""
    new_file = not os.path.exists(path) or os.path.getsize(path) == 0
    with open(path, "a") as f:
        if new_file:
            f.write(REPORT_HEADER)
        f.write(
            f"| {label} | {iterations} | {width} x {height} | "
            f"{time_ms:.3f} |\n"
        )


def _sequential_path(destination):
    stem, ext = os.path.splitext(destination)
    return f"{stem}_sequential{ext}"


def _run(args, parser):
    if args.list_platforms:
        backend = _make_backend(args.backend)
        for index, name in enumerate(list_platforms(backend)):
            print(f"{index}: {name}")
        return 0
    if args.list_devices is not None:
        backend = _make_backend(args.backend)
        for index, (name, caps) in enumerate(
            list_devices(backend, args.list_devices)
        ):
            print(
                f"{index}: {name} (max tile {caps.max_tile_extent_x} x "
                f"{caps.max_tile_extent_y}, "
                f"{caps.global_memory_bytes} bytes of memory)"
            )
        return 0
    if args.source is None or args.destination is None:
        parser.error("source and destination images are required")

    params = ProcessingParams(
        iterations=args.iterations,
        threshold=args.threshold,
        conduction=args.conduction,
        lambda_=args.lambda_,
    )
    logger.info("number of iterations: %d", params.iterations)
    logger.info("conduction function: %s", params.conduction.name.lower())
    logger.info("conduction function threshold: %g", params.threshold)
    logger.info("run mode: %s", args.mode)

    source = None
    if args.kernel is not None:
        with open(args.kernel) as f:
            source = f.read()

    logger.info("reading input image...")
    image = imread(args.source)
    height, width = image.shape[:2]
    packed = pack(rgb_to_rgba(image)).reshape(height, width)

    results = {}
    if args.mode in ("sequential", "both"):
        logger.info("processing sequentially...")
        out = packed.copy()
        start = time.perf_counter()
        diffuse_sequential(out, params, update=args.update)
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        if args.profile:
            print(f"sequential execution time: {elapsed_ms:.3f} ms")
            if args.report:
                append_report(
                    args.report,
                    "host sequential",
                    params.iterations,
                    width,
                    height,
                    elapsed_ms,
                )
        results["sequential"] = out

    if args.mode in ("device", "both"):
        logger.info("processing on device...")
        out = packed.copy()
        scheduler = TileScheduler(
            _make_backend(args.backend),
            platform_index=args.platform,
            device_index=args.device,
            profile=args.profile,
            source=source,
            binary=args.binary,
            double_buffer=args.update == "jacobi",
        )
        scheduler.run(out, params)
        if args.profile:
            print(f"device execution time: {scheduler.elapsed_ms:.3f} ms")
            if args.report:
                append_report(
                    args.report,
                    f"{scheduler.platform.name} {scheduler.device.name}",
                    params.iterations,
                    width,
                    height,
                    scheduler.elapsed_ms,
                )
        results["device"] = out

    logger.info("saving image...")
    if args.mode == "both":
        seq = unpack(results["sequential"]).astype(np.int16)
        dev = unpack(results["device"]).astype(np.int16)
        print(f"max abs difference: {int(np.abs(seq - dev).max(initial=0))}")
        imsave(
            _sequential_path(args.destination),
            unpack(results["sequential"]).reshape(height, width, 4),
        )
    out = results["device" if "device" in results else "sequential"]
    imsave(args.destination, unpack(out).reshape(height, width, 4))
    logger.info("done")
    return 0


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
    )
    try:
        return _run(args, parser)
    except (PMFilterError, OSError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
