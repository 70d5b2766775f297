#!/usr/bin/env python3
"""
Main entry point for the rmm configure pass
"""

import argparse
import json
import os
import shutil
import subprocess
import sys
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from .config import ConfigLoader
from .errors import ConfigurationError, RmmBuildError, ToolchainMissingError
from .fetch import FetchManager, Fetcher, GitFetcher
from .models import DependencySpec, OptionSet, ResolvedDependency, TargetPlan, Toolchain
from .options import OptionCache, OptionResolver, parse_definitions
from .planner import AssemblyPlanner
from .toolchain import ToolchainDetector, require_cuda
from .utils import Logger, write_json_atomic

PLAN_FILENAME = "plan.json"


class ConfigurePass:
    """One sequential configuration pass over the source tree"""

    def __init__(self,
                 source_dir: Optional[Path] = None,
                 build_dir: Optional[Path] = None,
                 overrides: Optional[Mapping[str, str]] = None,
                 environ: Optional[Mapping[str, str]] = None,
                 fetcher: Optional[Fetcher] = None,
                 toolchain_detector: Optional[ToolchainDetector] = None,
                 config: Optional[ConfigLoader] = None,
                 parallel_fetch: bool = False,
                 use_cache: bool = True,
                 verbose: bool = False,
                 dry_run: bool = False,
                 logger: Optional[Logger] = None):
        """
        Initialize the configure pass

        Args:
            source_dir: Library source tree
            build_dir: Build tree holding staged dependencies and outputs
            overrides: Explicit option values
            environ: Environment used for option and toolchain lookup
            fetcher: Dependency transport, git by default
            toolchain_detector: Toolchain detection strategy
            config: Declarations, the packaged ones by default
            parallel_fetch: Fetch dependencies concurrently
            use_cache: Read and write the persisted option cache
            verbose: Enable verbose output
            dry_run: Resolve and plan without fetching or writing anything
            logger: Logger instance
        """
        self.source_dir = Path(source_dir or Path.cwd()).resolve()
        self.build_dir = Path(build_dir or self.source_dir / "build").resolve()
        self.overrides = dict(overrides or {})
        self.environ = dict(os.environ if environ is None else environ)
        self.parallel_fetch = parallel_fetch
        self.dry_run = dry_run

        self.logger = logger or Logger(verbose=verbose)
        self.config = config or ConfigLoader()
        self.project = self.config.get_project_spec()
        self.option_specs = self.config.get_option_specs()
        self.option_cache = OptionCache(self.build_dir, self.logger) if use_cache else None

        if fetcher is None:
            fetcher = GitFetcher(
                logger=self.logger,
                retries=int(self.config.get_fetch_option("retries", 3)),
                retry_delay=float(self.config.get_fetch_option("retry_delay", 2.0)),
            )
        self.detector = toolchain_detector or ToolchainDetector(environ=self.environ)
        self.fetch_manager = FetchManager(self.build_dir, fetcher, logger=self.logger, dry_run=dry_run)

        self.options: Optional[OptionSet] = None
        self.toolchain: Optional[Toolchain] = None
        self.plan: Optional[TargetPlan] = None

    def run(self) -> TargetPlan:
        """
        Run the whole pass: options, toolchain, fetch, plan, emit

        Returns:
            The finalized target plan
        """
        self.logger.info(f"Configuring {self.project.name} {self.project.version}")

        options = self.resolve_options()
        self.detect_toolchain(options)
        specs = self.declare_dependencies()
        resolved = self.fetch_dependencies()
        plan = self.assemble(specs, resolved)

        if self.dry_run:
            self.logger.info("[DRY RUN] Plan not written")
        else:
            self.apply_configured_files(plan)
            self.write_plan(plan)
            if self.option_cache is not None:
                self.option_cache.save(options, self.option_specs)

        self.logger.success("Configuring done")
        return plan

    def resolve_options(self) -> OptionSet:
        cache = self.option_cache.load() if self.option_cache is not None else {}
        resolver = OptionResolver(self.option_specs, logger=self.logger)
        self.options = resolver.resolve(self.overrides, self.environ, cache)
        return self.options

    def detect_toolchain(self, options: OptionSet) -> Toolchain:
        self.toolchain = self.detector.detect(
            want_tests=bool(options["BUILD_TESTS"]),
            want_benchmarks=bool(options["BUILD_BENCHMARKS"]),
        )
        require_cuda(self.toolchain)
        version = f" {self.toolchain.cuda_version}" if self.toolchain.cuda_version else ""
        self.logger.info(f"Found CUDAToolkit{version}: {self.toolchain.cuda_root}")
        return self.toolchain

    def declare_dependencies(self) -> Dict[str, DependencySpec]:
        specs = {spec.name: spec for spec in self.config.get_dependency_specs()}
        for spec in specs.values():
            self.fetch_manager.declare(spec)
        return specs

    def fetch_dependencies(self) -> Dict[str, ResolvedDependency]:
        return self.fetch_manager.resolve_all(parallel=self.parallel_fetch)

    def assemble(self,
                 specs: Mapping[str, DependencySpec],
                 resolved: Mapping[str, ResolvedDependency]) -> TargetPlan:
        if self.options is None or self.toolchain is None:
            raise ConfigurationError("Options and toolchain must be resolved before planning")
        planner = AssemblyPlanner(self.project, self.options, self.toolchain, self.source_dir, logger=self.logger)
        self.plan = planner.plan(specs, resolved)
        return self.plan

    def apply_configured_files(self, plan: TargetPlan) -> None:
        """Copy configured files (COPYONLY) into the source tree"""
        for configured in plan.configured_files:
            if not configured.source.exists():
                raise ConfigurationError(
                    f"Configured file source missing: {configured.source}",
                    hint="Clean the dependency and configure again.",
                )
            destination = configured.destination
            if destination.exists() and destination.read_bytes() == configured.source.read_bytes():
                continue
            destination.parent.mkdir(parents=True, exist_ok=True)
            self.logger.debug(f"Copying {configured.source} -> {destination}")
            shutil.copyfile(configured.source, destination)

    def write_plan(self, plan: TargetPlan) -> Path:
        path = write_json_atomic(self.build_dir / PLAN_FILENAME, plan.model_dump(mode="json"))
        self.logger.info(f"Target plan written to {path}")
        return path

    def load_plan(self) -> TargetPlan:
        path = self.build_dir / PLAN_FILENAME
        if not path.exists():
            raise ConfigurationError(
                f"No target plan found in {self.build_dir}",
                hint="Run the configure command first.",
            )
        with open(path, 'r', encoding="utf-8") as f:
            return TargetPlan.model_validate(json.load(f))

    def build_docs(self) -> bool:
        """
        Invoke the external documentation generator

        Returns:
            True if the generator exited successfully
        """
        command = list(self.project.doc_command)
        if not shutil.which(command[0]):
            raise ToolchainMissingError(
                f"{command[0]} not found",
                hint="Install it to generate the API documentation.",
            )
        cwd = self.source_dir / self.project.doc_dir
        if not cwd.is_dir():
            raise ConfigurationError(
                f"Documentation directory not found: {cwd}",
                hint="Point --source-dir at the library source tree.",
            )
        self.logger.info(f"Running {' '.join(command)} in {cwd}")
        if self.dry_run:
            return True
        try:
            return subprocess.run(command, cwd=cwd, check=False).returncode == 0
        except OSError as exc:
            raise ToolchainMissingError(
                f"Failed to run {command[0]}",
                context={"directory": str(cwd), "error": str(exc)},
            ) from exc

    def clean(self, deps: Optional[List[str]] = None, full: bool = False) -> None:
        """
        Clean staged dependencies

        Args:
            deps: Specific dependencies to clean (None for all)
            full: Also drop the target plan and the option cache
        """
        self.declare_dependencies()
        if deps is None:
            self.fetch_manager.clean()
        else:
            for dep in deps:
                self.fetch_manager.clean(dep)

        if full and not self.dry_run:
            (self.build_dir / PLAN_FILENAME).unlink(missing_ok=True)
            if self.option_cache is not None:
                self.option_cache.clear()

    def show_info(self) -> None:
        """Show declared dependencies and options"""
        from . import __version__

        self.declare_dependencies()
        cache = self.option_cache.load() if self.option_cache is not None else {}

        print(f"\nrmm-build v{__version__}")
        print(f"{'='*50}")
        print(f"Project: {self.project.name} {self.project.version}")
        print(f"Source Directory: {self.source_dir}")
        print(f"Build Directory: {self.build_dir}")
        print(f"\nDependencies ({len(self.fetch_manager.declared)}):")
        for name in self.fetch_manager.declared:
            spec = self.fetch_manager.spec(name)
            status = "[OK] Staged" if self.fetch_manager.is_staged(name) else "[X] Not staged"
            print(f"  - {name:10} {spec.revision[:12]:14} {status}")

        print(f"\nOptions ({len(self.option_specs)}):")
        for spec in self.option_specs:
            value = cache.get(spec.name, spec.default)
            print(f"  - {spec.name:28} {str(value):10} {spec.description}")


def print_plan(plan: TargetPlan, logger: Logger) -> None:
    """Print a human readable summary of the plan"""
    logger.raw(f"\n{plan.name} {plan.version} ({plan.kind} library, {plan.build_type.value})")
    logger.raw(f"  C++ standard:        {plan.cxx_standard}")
    logger.raw(f"  C++ flags:           {' '.join(plan.cxx_flags) or '-'}")
    logger.raw(f"  CUDA flags:          {' '.join(plan.cuda_flags) or '-'}")
    logger.raw(f"  Sources:             {', '.join(str(s) for s in plan.sources) or '-'}")
    logger.raw(f"  Public includes:     {', '.join(plan.public_include_dirs) or '-'}")
    logger.raw(f"  Private includes:    {', '.join(plan.private_include_dirs) or '-'}")
    for library in plan.link_libraries:
        logger.raw(f"  Links:               {library.name} ({library.visibility.value}, {library.linkage.value})")
    for definition in plan.compile_definitions:
        logger.raw(f"  Definition:          {definition} ({definition.scope.value})")
    for subsystem in plan.subsystems:
        state = "enabled" if subsystem.enabled else "disabled"
        logger.raw(f"  Subsystem:           {subsystem.name} ({state})")
    for rule in plan.install_rules:
        logger.raw(f"  Install:             {rule.source} -> {rule.destination}")


def main(argv: Optional[List[str]] = None):
    """Command-line interface"""
    parser = argparse.ArgumentParser(
        prog="rmm-build",
        description="Configure the rmm shared library and fetch its third-party sources",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s configure                          # Configure with defaults (Release)
  %(prog)s configure -D LOGGING_LEVEL=INFO    # Override an option
  %(prog)s fetch --parallel-fetch             # Only stage dependencies
  %(prog)s clean --dep spdlog                 # Drop one staged dependency
  %(prog)s info                               # Show dependencies and options
        """
    )

    parser.add_argument(
        "command",
        choices=["configure", "fetch", "clean", "info", "doc"],
        help="Command to execute"
    )

    parser.add_argument(
        "-D",
        dest="definitions",
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Set an option (can be used multiple times)"
    )

    parser.add_argument(
        "--source-dir",
        type=Path,
        help="Library source directory (default: current directory)"
    )

    parser.add_argument(
        "--build-dir",
        type=Path,
        help="Build directory (default: <source-dir>/build)"
    )

    parser.add_argument(
        "--dep",
        action="append",
        help="Specific dependency to clean (can be used multiple times)"
    )

    parser.add_argument(
        "--parallel-fetch",
        action="store_true",
        help="Fetch independent dependencies concurrently"
    )

    parser.add_argument(
        "--no-cache",
        action="store_true",
        help="Ignore and do not update the persisted option cache"
    )

    parser.add_argument(
        "--full-clean",
        action="store_true",
        help="Also remove the target plan and option cache (use with clean command)"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output"
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Resolve and plan without fetching or writing anything"
    )

    args = parser.parse_args(argv)

    try:
        overrides = parse_definitions(args.definitions)
        bs = ConfigurePass(
            source_dir=args.source_dir,
            build_dir=args.build_dir,
            overrides=overrides,
            parallel_fetch=args.parallel_fetch,
            use_cache=not args.no_cache,
            verbose=args.verbose,
            dry_run=args.dry_run,
        )

        if args.command == "configure":
            plan = bs.run()
            print_plan(plan, bs.logger)

        elif args.command == "fetch":
            bs.resolve_options()
            bs.declare_dependencies()
            bs.fetch_dependencies()
            bs.logger.success("All dependencies staged")

        elif args.command == "clean":
            bs.clean(deps=args.dep, full=args.full_clean)

        elif args.command == "info":
            bs.show_info()

        elif args.command == "doc":
            if not bs.build_docs():
                bs.logger.error("Documentation generator failed")
                sys.exit(1)

    except KeyboardInterrupt:
        print("\nConfiguration interrupted by user", file=sys.stderr)
        sys.exit(130)
    except RmmBuildError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    sys.exit(0)


if __name__ == "__main__":
    main()
