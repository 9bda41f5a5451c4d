#!/usr/bin/env python
# SPDX-FileCopyrightText: Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Benchmark Script: sequential host engine vs. tiled device dispatch

This script times Perona-Malik filtering of a sample image at several sizes
and iteration counts, on the sequential host engine and on a device backend,
and checks that both produce the same result.

Usage:
    python benchmark.py [--backend cuda|host] [--output-format markdown|json]
                        [--output-file report.md]
"""

import argparse
import json
import sys
import time
from dataclasses import asdict, dataclass

import numpy as np
from skimage import data, transform

from pmfilter.device import TileScheduler
from pmfilter.restoration import ProcessingParams, diffuse_sequential
from pmfilter.util import pack, rgb_to_rgba


@dataclass
class BenchmarkResult:
    """Timings of one image size and iteration count."""

    width: int
    height: int
    iterations: int
    sequential_ms: float
    device_ms: float
    device_label: str
    max_abs_difference: int

    @property
    def speedup(self) -> float:
        if self.device_ms == 0:
            return float("nan")
        return self.sequential_ms / self.device_ms


def make_image(size: int) -> np.ndarray:
    """Packed RGBA rendition of the astronaut image at ``size x size``."""
    image = transform.resize(data.astronaut(), (size, size), anti_aliasing=True)
    image = (image * 255).round().astype(np.uint8)
    return pack(rgb_to_rgba(image)).reshape(size, size)


def make_backend(name: str):
    if name == "host":
        from pmfilter.device import HostBackend

        return HostBackend()
    from pmfilter.device import CupyBackend

    return CupyBackend()


def run_case(packed, iterations, conduction, backend_name) -> BenchmarkResult:
    params = ProcessingParams(iterations=iterations, conduction=conduction)
    height, width = packed.shape

    sequential = packed.copy()
    start = time.perf_counter()
    diffuse_sequential(sequential, params)
    sequential_ms = (time.perf_counter() - start) * 1000.0

    device = packed.copy()
    scheduler = TileScheduler(make_backend(backend_name), profile=True)
    scheduler.run(device, params)

    diff = np.abs(
        device.view(np.uint8).astype(np.int16)
        - sequential.view(np.uint8).astype(np.int16)
    ).max(initial=0)
    return BenchmarkResult(
        width=width,
        height=height,
        iterations=iterations,
        sequential_ms=sequential_ms,
        device_ms=scheduler.elapsed_ms,
        device_label=f"{scheduler.platform.name} {scheduler.device.name}",
        max_abs_difference=int(diff),
    )


def generate_markdown_report(results: list[BenchmarkResult]) -> str:
    """Generate a markdown table from the benchmark results."""
    lines = [
        "| device | iterations | width x height, px | sequential, ms "
        "| device, ms | speedup | max abs difference |",
        "|--------|------------|--------------------|----------------"
        "|------------|---------|--------------------|",
    ]
    for r in results:
        lines.append(
            f"| {r.device_label} | {r.iterations} | {r.width} x {r.height} "
            f"| {r.sequential_ms:.3f} | {r.device_ms:.3f} | {r.speedup:.1f} "
            f"| {r.max_abs_difference} |"
        )
    return "\n".join(lines) + "\n"


def generate_json_report(results: list[BenchmarkResult]) -> str:
    """Generate a JSON report from the benchmark results."""
    data = {
        "results": [
            dict(asdict(r), speedup=r.speedup) for r in results
        ]
    }
    return json.dumps(data, indent=2)


def main():
    parser = argparse.ArgumentParser(
        description="Compare sequential and device Perona-Malik filtering"
    )
    parser.add_argument(
        "--backend",
        choices=["cuda", "host"],
        default="cuda",
        help="Device backend to benchmark (default: cuda)",
    )
    parser.add_argument(
        "--sizes",
        type=int,
        nargs="*",
        default=[128, 256, 512],
        help="Square image sizes in pixels (default: 128 256 512)",
    )
    parser.add_argument(
        "--iterations",
        type=int,
        nargs="*",
        default=[1, 16],
        help="Iteration counts (default: 1 16)",
    )
    parser.add_argument(
        "--conduction",
        choices=["quadric", "exponential"],
        default="exponential",
        help="Conduction function (default: exponential)",
    )
    parser.add_argument(
        "--output-format",
        choices=["markdown", "json"],
        default="markdown",
        help="Output format for the report (default: markdown)",
    )
    parser.add_argument(
        "--output-file",
        type=str,
        default=None,
        help="Output file path (default: stdout)",
    )

    args = parser.parse_args()

    print("Benchmarking Perona-Malik filtering...", file=sys.stderr)
    results = []
    for size in args.sizes:
        packed = make_image(size)
        for iterations in args.iterations:
            print(
                f"  {size} x {size}, {iterations} iterations...",
                file=sys.stderr,
            )
            results.append(
                run_case(packed, iterations, args.conduction, args.backend)
            )

    if args.output_format == "markdown":
        report = generate_markdown_report(results)
    else:
        report = generate_json_report(results)

    if args.output_file:
        with open(args.output_file, "w") as f:
            f.write(report)
        print(f"Report written to {args.output_file}", file=sys.stderr)
    else:
        print(report)


if __name__ == "__main__":
    main()
