"""Shared test fixtures"""

from __future__ import annotations

import hashlib
import os
import threading
from pathlib import Path

import pytest

from rmm_build.config import ConfigLoader
from rmm_build.errors import DependencyFetchError
from rmm_build.main import ConfigurePass
from rmm_build.models import DependencySpec, Toolchain


class FakeFetcher:
    """Populates a source tree without touching the network"""

    def __init__(self, fail=()):
        self.calls = []
        self.fail = set(fail)
        self._lock = threading.Lock()

    def fetch(self, spec: DependencySpec, destination: Path) -> str:
        with self._lock:
            self.calls.append(spec.name)

        destination.mkdir(parents=True)
        if spec.name in self.fail:
            (destination / "partial.txt").write_text("half written\n", encoding="utf-8")
            raise DependencyFetchError(f"simulated failure for {spec.name}")

        include_dir = destination / spec.include_subdir if spec.include_subdir else destination
        include_dir.mkdir(parents=True, exist_ok=True)
        for header in spec.detail_headers:
            (include_dir / header).write_text(f"// {spec.name} {header}\n", encoding="utf-8")
        for source in spec.sources:
            path = destination / source
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(f"// {spec.name} {source}\n", encoding="utf-8")
        return hashlib.sha1(f"{spec.name}@{spec.revision}".encode("utf-8")).hexdigest()


class FakeDetector:
    """Returns a fixed toolchain, honouring the framework probes"""

    def __init__(self, toolchain: Toolchain):
        self.toolchain = toolchain
        self.calls = 0

    def detect(self, want_tests: bool = False, want_benchmarks: bool = False) -> Toolchain:
        self.calls += 1
        return self.toolchain.model_copy(update={
            "gtest_root": self.toolchain.gtest_root if want_tests else None,
            "gbench_root": self.toolchain.gbench_root if want_benchmarks else None,
        })


@pytest.fixture
def config() -> ConfigLoader:
    return ConfigLoader()


@pytest.fixture
def toolchain() -> Toolchain:
    return Toolchain(
        cuda_root=Path("/usr/local/cuda"),
        nvcc=Path("/usr/local/cuda/bin/nvcc"),
        cuda_version="11.0",
        c_compiler="gcc",
        cxx_compiler="g++",
        cxx_compiler_id="GNU",
        gtest_root=Path("/usr"),
        gbench_root=None,
    )


@pytest.fixture
def make_fetcher():
    """Factory for fetchers, optionally failing for some dependency names"""
    return FakeFetcher


@pytest.fixture
def make_detector():
    return FakeDetector


@pytest.fixture
def fake_fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def fake_doxygen(tmp_path, monkeypatch):
    """Puts a ``doxygen`` executable on PATH that records where it ran"""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    script = bin_dir / "doxygen"
    script.write_text("#!/bin/sh\necho \"$@\" > doxygen.out\n", encoding="utf-8")
    script.chmod(0o755)
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
    return script


@pytest.fixture
def make_pass(tmp_path, toolchain, fake_fetcher):
    """Factory for a configure pass isolated from the host environment"""

    def _make(**kwargs) -> ConfigurePass:
        kwargs.setdefault("source_dir", tmp_path / "rmm")
        kwargs.setdefault("build_dir", tmp_path / "rmm" / "build")
        kwargs.setdefault("environ", {})
        kwargs.setdefault("fetcher", fake_fetcher)
        kwargs.setdefault("toolchain_detector", FakeDetector(toolchain))
        Path(kwargs["source_dir"]).mkdir(parents=True, exist_ok=True)
        return ConfigurePass(**kwargs)

    return _make
