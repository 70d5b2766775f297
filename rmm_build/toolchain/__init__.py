"""
Toolchain detection for the CUDA runtime and optional test frameworks
"""

import os
import re
import shutil
import subprocess
from pathlib import Path
from typing import Callable, Mapping, Optional, Sequence

from ..errors import ToolchainMissingError
from ..models import Toolchain

DEFAULT_CUDA_ROOTS = ("/usr/local/cuda", "/opt/cuda")
DEFAULT_SEARCH_PREFIXES = ("/usr/local", "/usr")


class ToolchainDetector:
    """Detects compilers, the CUDA toolkit and optional frameworks"""

    def __init__(self,
                 environ: Optional[Mapping[str, str]] = None,
                 which: Callable[[str], Optional[str]] = shutil.which,
                 cuda_roots: Sequence[str] = DEFAULT_CUDA_ROOTS,
                 search_prefixes: Sequence[str] = DEFAULT_SEARCH_PREFIXES):
        """
        Initialize the detector

        Args:
            environ: Environment to read CC, CXX, CUDA_HOME and friends from
            which: Executable lookup, ``shutil.which`` by default
            cuda_roots: Fallback CUDA installation roots
            search_prefixes: Prefixes probed for GoogleTest and Google Benchmark
        """
        self.environ = dict(os.environ if environ is None else environ)
        self.which = which
        self.cuda_roots = tuple(cuda_roots)
        self.search_prefixes = tuple(search_prefixes)

    def detect(self, want_tests: bool = False, want_benchmarks: bool = False) -> Toolchain:
        """
        Detect the host toolchain

        Args:
            want_tests: Probe for GoogleTest
            want_benchmarks: Probe for Google Benchmark

        Returns:
            Toolchain description; missing pieces are left unset
        """
        nvcc = self._find_nvcc()
        cuda_root = nvcc.parent.parent if nvcc else None
        cxx = self.environ.get("CXX") or self.which("c++")

        return Toolchain(
            cuda_root=cuda_root,
            nvcc=nvcc,
            cuda_version=self._cuda_version(nvcc) if nvcc else None,
            c_compiler=self.environ.get("CC") or self.which("cc"),
            cxx_compiler=cxx,
            cxx_compiler_id=compiler_id(cxx),
            gtest_root=self._find_package("GTEST_ROOT", "include/gtest/gtest.h") if want_tests else None,
            gbench_root=(self._find_package("GBENCH_ROOT", "include/benchmark/benchmark.h")
                         if want_benchmarks else None),
        )

    def _find_nvcc(self) -> Optional[Path]:
        for var in ("CUDA_HOME", "CUDA_PATH", "CUDAToolkit_ROOT"):
            root = self.environ.get(var)
            if root and (Path(root) / "bin" / "nvcc").exists():
                return Path(root) / "bin" / "nvcc"

        found = self.which("nvcc")
        if found:
            return Path(found)

        for root in self.cuda_roots:
            candidate = Path(root) / "bin" / "nvcc"
            if candidate.exists():
                return candidate
        return None

    def _cuda_version(self, nvcc: Path) -> Optional[str]:
        try:
            result = subprocess.run(
                [str(nvcc), "--version"],
                capture_output=True,
                text=True,
                check=True,
                timeout=30,
            )
        except (OSError, subprocess.SubprocessError):
            return None
        match = re.search(r"release (\d+\.\d+)", result.stdout)
        return match.group(1) if match else None

    def _find_package(self, root_var: str, marker: str) -> Optional[Path]:
        candidates = []
        if self.environ.get(root_var):
            candidates.append(Path(self.environ[root_var]))
        candidates.extend(Path(prefix) for prefix in self.search_prefixes)

        for prefix in candidates:
            if (prefix / marker).exists():
                return prefix
        return None


def compiler_id(compiler: Optional[str]) -> str:
    """Classify a compiler command as GNU, Clang or Unknown"""
    if not compiler:
        return "Unknown"
    name = Path(compiler.split()[-1]).name.lower()
    if "clang" in name:
        return "Clang"
    if re.search(r"(^|-)(g\+\+|gcc|c\+\+|cc)(-\d+(\.\d+)*)?$", name):
        return "GNU"
    return "Unknown"


def require_cuda(toolchain: Toolchain) -> None:
    """Raise when the CUDA toolkit was not found"""
    if toolchain.nvcc is None:
        raise ToolchainMissingError(
            "CUDA toolkit not found",
            hint="Install the CUDA toolkit or point CUDA_HOME at it.",
        )


__all__ = ["ToolchainDetector", "compiler_id", "require_cuda"]
