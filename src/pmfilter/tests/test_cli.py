# SPDX-FileCopyrightText: Copyright (c) 2025, NVIDIA CORPORATION. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

import logging

import numpy as np
import pytest
from numpy.testing import assert_array_equal

from pmfilter.cli import REPORT_HEADER, append_report, build_parser, main
from pmfilter.device import KERNEL_SOURCE_PATH
from pmfilter.io import imread, imsave
from pmfilter.restoration import denoise_perona_malik


@pytest.fixture
def source(tmp_path):
    rng = np.random.default_rng(0)
    image = np.full((24, 20, 3), 80, dtype=np.int16)
    image[:, 10:] = 180
    image = np.clip(image + rng.normal(0, 8, image.shape), 0, 255)
    path = tmp_path / "in.ppm"
    imsave(path, image.astype(np.uint8))
    return path


def _host(*args):
    return ["--backend", "host", *map(str, args)]


def test_parser_defaults():
    args = build_parser().parse_args(["in.ppm", "out.ppm"])
    assert args.iterations == 16
    assert args.threshold == 30.0
    assert args.conduction == "exponential"
    assert args.lambda_ == 0.25
    assert args.mode == "device"
    assert args.update == "jacobi"
    assert args.backend == "cuda"
    assert args.platform is None and args.device is None


def test_parser_numeric_conduction():
    args = build_parser().parse_args(["-f", "0", "a.ppm", "b.ppm"])
    assert args.conduction == 0


def test_parser_kernel_and_binary_are_exclusive(capsys):
    with pytest.raises(SystemExit):
        build_parser().parse_args(["-k", "a.cu", "--binary", "a.cubin"])


@pytest.mark.parametrize("mode", ["sequential", "device"])
def test_filter(source, tmp_path, mode):
    dest = tmp_path / "out.ppm"
    assert main(_host("-r", mode, "-i", 5, "-t", 20, "-f", "quadric", source, dest)) == 0
    expected = denoise_perona_malik(
        imread(source), iterations=5, threshold=20, conduction="quadric"
    )
    assert_array_equal(imread(dest), expected)


def test_both_modes_agree(source, tmp_path, capsys):
    dest = tmp_path / "out.ppm"
    assert main(_host("-r", "both", "-i", 3, source, dest)) == 0
    assert "max abs difference: 0" in capsys.readouterr().out
    sequential = tmp_path / "out_sequential.ppm"
    assert sequential.exists()
    assert_array_equal(imread(sequential), imread(dest))


def test_gauss_seidel_sequential(source, tmp_path):
    dest = tmp_path / "gs.ppm"
    args = _host("-r", "sequential", "--update", "gauss_seidel", source, dest)
    assert main(args) == 0
    expected = denoise_perona_malik(imread(source), update="gauss_seidel")
    assert_array_equal(imread(dest), expected)


def test_profile_and_report(source, tmp_path, capsys):
    report = tmp_path / "report.md"
    dest = tmp_path / "out.ppm"
    args = _host(
        "-r", "both", "-i", 2, "--profile", "--report", report, source, dest
    )
    assert main(args) == 0
    assert main(args) == 0
    out = capsys.readouterr().out
    assert "sequential execution time:" in out
    assert "device execution time:" in out

    text = report.read_text()
    assert text.startswith(REPORT_HEADER)
    assert text.count("platform & device") == 1
    rows = text[len(REPORT_HEADER) :].splitlines()
    assert len(rows) == 4
    assert rows[0].startswith("| host sequential | 2 | 20 x 24 |")
    assert rows[1].startswith("| Host NumPy | 2 | 20 x 24 |")


def test_append_report(tmp_path):
    path = tmp_path / "r.md"
    append_report(path, "gpu", 16, 640, 480, 1.23456)
    assert path.read_text() == REPORT_HEADER + "| gpu | 16 | 640 x 480 | 1.235 |\n"


def test_custom_kernel(source, tmp_path):
    dest = tmp_path / "out.ppm"
    assert main(_host("-k", KERNEL_SOURCE_PATH, "-i", 1, source, dest)) == 0
    assert dest.exists()


@pytest.mark.parametrize(
    "extra, message",
    [
        (["-i", "-2"], "iterations"),
        (["-f", "cubic"], "conduction"),
        (["--binary", "kernel.cubin"], "binaries"),
    ],
)
def test_errors_return_one(source, tmp_path, capsys, extra, message):
    assert main(_host(*extra, source, tmp_path / "out.ppm")) == 1
    err = capsys.readouterr().err
    assert err.startswith("error:")
    assert message in err


def test_bad_kernel_reports_log(source, tmp_path, capsys):
    kernel = tmp_path / "blur.cu"
    kernel.write_text("__global__ void blur() {}\n")
    assert main(_host("-k", kernel, source, tmp_path / "out.ppm")) == 1
    assert "entry point 'perona_malik' not found" in capsys.readouterr().err


def test_malformed_input(tmp_path, capsys):
    bad = tmp_path / "bad.ppm"
    bad.write_bytes(b"P6\n4 4\n255\n" + bytes(5))
    dest = tmp_path / "out.ppm"
    assert main(_host(bad, dest)) == 1
    assert "expected 48" in capsys.readouterr().err
    assert not dest.exists()


def test_missing_input(tmp_path, capsys):
    assert main(_host(tmp_path / "nope.ppm", tmp_path / "out.ppm")) == 1
    assert "error:" in capsys.readouterr().err


def test_missing_destination(source):
    with pytest.raises(SystemExit) as excinfo:
        main(_host(source))
    assert excinfo.value.code == 2


def test_list_platforms_and_devices(capsys):
    assert main(_host("--list-platforms")) == 0
    assert capsys.readouterr().out == "0: Host\n"
    assert main(_host("--list-devices", 0)) == 0
    assert capsys.readouterr().out.startswith("0: NumPy (max tile 1024 x 1024")
    assert main(_host("--list-devices", 5)) == 1


def test_verbose_logging(source, tmp_path, caplog):
    with caplog.at_level(logging.INFO):
        assert main(_host("-v", "-i", 1, source, tmp_path / "out.ppm")) == 0
    assert "number of iterations: 1" in caplog.text
    assert "selected device: NumPy" in caplog.text
