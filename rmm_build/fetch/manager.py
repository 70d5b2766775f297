"""
Dependency fetch manager: declare every dependency, then resolve each at most once
"""

import json
import shutil
import tempfile
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Dict, List, Optional, Protocol

from ..errors import ConfigurationError, DependencyFetchError, RmmBuildError
from ..models import DependencySpec, ResolvedDependency
from ..utils import Logger, write_json_atomic


class Fetcher(Protocol):
    def fetch(self, spec: DependencySpec, destination: Path) -> str:
        ...


class FetchManager:
    """Stages third-party sources under ``<build_dir>/_deps``"""

    def __init__(self,
                 build_dir: Path,
                 fetcher: Fetcher,
                 logger: Optional[Logger] = None,
                 dry_run: bool = False):
        """
        Initialize the fetch manager

        Args:
            build_dir: Build tree the dependencies are staged into
            fetcher: Transport used to populate a source directory
            logger: Logger instance
            dry_run: Predict paths without fetching or writing markers
        """
        self.build_dir = Path(build_dir)
        self.deps_dir = self.build_dir / "_deps"
        self.fetcher = fetcher
        self.logger = logger
        self.dry_run = dry_run

        self._specs: Dict[str, DependencySpec] = {}
        self._resolved: Dict[str, ResolvedDependency] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()
        self._resolving = False

    # Declaration phase

    def declare(self, spec: DependencySpec) -> None:
        """
        Register a dependency

        Args:
            spec: Dependency declaration

        Raises:
            ConfigurationError: When resolution already started, or the name
                is already declared with a different spec
        """
        with self._registry_lock:
            if self._resolving:
                raise ConfigurationError(
                    f"Cannot declare {spec.name} after dependency resolution started",
                    hint="Declare every dependency before resolving any of them.",
                )
            existing = self._specs.get(spec.name)
            if existing is not None:
                if existing != spec:
                    raise ConfigurationError(f"Dependency {spec.name} declared twice with different settings")
                return
            self._specs[spec.name] = spec
            self._locks[spec.name] = threading.Lock()

    @property
    def declared(self) -> List[str]:
        return list(self._specs)

    def spec(self, name: str) -> DependencySpec:
        if name not in self._specs:
            raise ConfigurationError(
                f"Unknown dependency: {name}",
                hint=f"Declared: {', '.join(self._specs) or 'none'}",
            )
        return self._specs[name]

    # Staging layout

    def source_dir(self, name: str) -> Path:
        return self.deps_dir / f"{name}-src"

    def binary_dir(self, name: str) -> Path:
        return self.deps_dir / f"{name}-build"

    def marker_path(self, name: str) -> Path:
        return self.deps_dir / f"{name}-stamp" / f"{name}.json"

    def is_staged(self, name: str) -> bool:
        """Check whether the build tree holds a valid staging marker for ``name``"""
        return self._read_marker(self.spec(name)) is not None

    # Resolution phase

    def resolve(self, name: str) -> ResolvedDependency:
        """
        Fetch a dependency unless already staged

        Args:
            name: Dependency name

        Returns:
            The resolved dependency; repeated calls return the same object

        Raises:
            DependencyFetchError: When the dependency cannot be fetched
        """
        spec = self.spec(name)
        with self._registry_lock:
            self._resolving = True
            lock = self._locks[name]

        with lock:
            resolved = self._resolved.get(name)
            if resolved is None:
                resolved = self._stage(spec)
                self._resolved[name] = resolved
            return resolved

    def resolve_all(self, parallel: bool = False, max_workers: Optional[int] = None) -> Dict[str, ResolvedDependency]:
        """
        Resolve every declared dependency

        Args:
            parallel: Fetch independent dependencies concurrently
            max_workers: Thread pool size when ``parallel`` is set

        Returns:
            Resolved dependencies keyed by name, in declaration order
        """
        names = self.declared
        with self._registry_lock:
            self._resolving = True

        if not parallel or len(names) < 2:
            return {name: self.resolve(name) for name in names}

        errors: List[RmmBuildError] = []
        with ThreadPoolExecutor(max_workers=max_workers or len(names)) as executor:
            futures = {executor.submit(self.resolve, name): name for name in names}
            for future in as_completed(futures):
                try:
                    future.result()
                except RmmBuildError as exc:
                    errors.append(exc)

        if errors:
            raise errors[0]
        return {name: self._resolved[name] for name in names}

    def clean(self, name: Optional[str] = None) -> None:
        """Remove staged sources, binary directories and markers"""
        names = [name] if name is not None else self.declared
        for dep in names:
            self.spec(dep)
            for path in (self.source_dir(dep), self.binary_dir(dep), self.marker_path(dep).parent):
                if path.exists():
                    self._log_debug(f"Removing {path}")
                    if not self.dry_run:
                        shutil.rmtree(path, ignore_errors=True)
            self._resolved.pop(dep, None)

    def _stage(self, spec: DependencySpec) -> ResolvedDependency:
        source_dir = self.source_dir(spec.name)
        marker = self._read_marker(spec)

        if marker is not None:
            self._log_info(f"{spec.name} already populated at {spec.revision}")
            commit = marker.get("commit")
        elif self.dry_run:
            self._log_info(f"[DRY RUN] Would fetch {spec.name} ({spec.repository} @ {spec.revision})")
            commit = None
        else:
            commit = self._fetch(spec, source_dir)

        binary_dir = None
        if not spec.populate_only:
            binary_dir = self.binary_dir(spec.name)
            if not self.dry_run:
                binary_dir.mkdir(parents=True, exist_ok=True)

        return ResolvedDependency(
            name=spec.name,
            revision=spec.revision,
            commit=commit,
            source_dir=source_dir,
            build_dir=binary_dir,
            include_dir=source_dir / spec.include_subdir if spec.include_subdir else source_dir,
            source_files=tuple(source_dir / source for source in spec.sources),
        )

    def _fetch(self, spec: DependencySpec, source_dir: Path) -> str:
        self._log_info(f"Fetching {spec.name} ({spec.repository} @ {spec.revision})")

        # A stale or foreign marker must not survive a failed refetch
        self.marker_path(spec.name).unlink(missing_ok=True)
        self.deps_dir.mkdir(parents=True, exist_ok=True)

        staging_root = Path(tempfile.mkdtemp(prefix=f".{spec.name}-", dir=str(self.deps_dir)))
        try:
            staged = staging_root / "src"
            try:
                commit = self.fetcher.fetch(spec, staged)
            except OSError as exc:
                raise DependencyFetchError(
                    f"Failed to fetch {spec.name}",
                    context={"repository": spec.repository, "error": str(exc)},
                ) from exc

            if source_dir.exists():
                shutil.rmtree(source_dir)
            shutil.move(str(staged), str(source_dir))
        finally:
            shutil.rmtree(staging_root, ignore_errors=True)

        write_json_atomic(self.marker_path(spec.name), {
            "name": spec.name,
            "repository": spec.repository,
            "revision": spec.revision,
            "commit": commit,
            "populate_only": spec.populate_only,
        })
        if self.logger:
            self.logger.success(f"Populated {spec.name} at {commit}")
        return commit

    def _read_marker(self, spec: DependencySpec) -> Optional[dict]:
        path = self.marker_path(spec.name)
        if not path.exists() or not self.source_dir(spec.name).exists():
            return None
        try:
            with open(path, 'r', encoding="utf-8") as f:
                marker = json.load(f)
        except (OSError, json.JSONDecodeError):
            self._log_debug(f"Ignoring unreadable staging marker {path}")
            return None
        if not isinstance(marker, dict):
            return None
        if marker.get("repository") != spec.repository or marker.get("revision") != spec.revision:
            self._log_debug(f"Staging marker for {spec.name} is for a different revision")
            return None
        return marker

    def _log_info(self, msg: str) -> None:
        if self.logger:
            self.logger.info(msg)

    def _log_debug(self, msg: str) -> None:
        if self.logger:
            self.logger.debug(msg)


__all__ = ["FetchManager", "Fetcher"]
