"""Assembles the shared library target plan from options and staged dependencies"""

from __future__ import annotations

from enum import IntEnum
from pathlib import Path
from typing import Mapping, Optional

from .errors import ConfigurationError
from .models import (
    BuildType,
    CompileDefinition,
    ConfiguredFile,
    CustomTarget,
    DefinitionScope,
    DependencySpec,
    InstallRule,
    LinkLibrary,
    Linkage,
    LoggingLevel,
    OptionSet,
    OptionValue,
    ProjectSpec,
    ResolvedDependency,
    Subsystem,
    TargetPlan,
    Toolchain,
    Visibility,
)
from .utils import Logger

WARNING_FLAGS = ("-Werror", "-Wno-error=deprecated-declarations")
WARNING_COMPILERS = ("GNU", "Clang")


class PlanStage(IntEnum):
    NEW = 0
    TOOLCHAIN = 1
    FEATURES = 2
    INCLUDE_LINK = 3
    INSTALL = 4
    FINALIZED = 5


def logging_level_definition(level: LoggingLevel) -> CompileDefinition:
    """The single definition that selects spdlog's compile-time level"""
    return CompileDefinition(name="SPDLOG_ACTIVE_LEVEL", value=level.macro, scope=DefinitionScope.PUBLIC)


class AssemblyPlanner:
    """Builds a :class:`TargetPlan` through strictly ordered stages.

    Each stage reads options exactly once; running a stage out of order or
    reading an option twice raises :class:`ConfigurationError`.
    """

    def __init__(self,
                 project: ProjectSpec,
                 options: OptionSet,
                 toolchain: Toolchain,
                 source_dir: Path,
                 logger: Optional[Logger] = None):
        self.project = project
        self.options = options
        self.toolchain = toolchain
        self.source_dir = Path(source_dir)
        self.logger = logger

        self._stage = PlanStage.NEW
        self._consumed: set[str] = set()

        self._build_type: Optional[BuildType] = None
        self._cxx_flags: list[str] = []
        self._cuda_flags: list[str] = []
        self._sources: list[Path] = []
        self._public_includes: list[str] = []
        self._private_includes: list[str] = []
        self._links: list[LinkLibrary] = []
        self._definitions: list[CompileDefinition] = []
        self._properties: dict[str, str] = {}
        self._subsystems: list[Subsystem] = []
        self._configured_files: list[ConfiguredFile] = []
        self._custom_targets: list[CustomTarget] = []
        self._install_rules: list[InstallRule] = []
        self._cuda_runtime: Optional[LinkLibrary] = None

    @property
    def stage(self) -> PlanStage:
        return self._stage

    def plan(self,
             specs: Mapping[str, DependencySpec],
             dependencies: Mapping[str, ResolvedDependency]) -> TargetPlan:
        """Run every stage in order and return the finalized plan"""
        self.toolchain_stage()
        self.feature_stage()
        self.include_link_stage(specs, dependencies)
        self.install_stage()
        return self.finalize()

    def toolchain_stage(self) -> None:
        self._enter(PlanStage.TOOLCHAIN)

        value = self._consume("CMAKE_BUILD_TYPE")
        try:
            self._build_type = BuildType(value)
        except ValueError as exc:
            raise ConfigurationError(
                f"Unrecognized build type '{value}'",
                hint=f"Choose one of: {', '.join(b.value for b in BuildType)}",
            ) from exc

        if self.toolchain.cxx_compiler_id in WARNING_COMPILERS:
            self._cxx_flags.extend(WARNING_FLAGS)

    def feature_stage(self) -> None:
        self._enter(PlanStage.FEATURES)

        if self._consume("DISABLE_DEPRECATION_WARNING"):
            self._cuda_flags.extend(["-Xcompiler", "-Wno-deprecated-declarations"])
            self._cxx_flags.append("-Wno-deprecated-declarations")

        # Global so tests and benchmarks inherit it
        if self._consume("PER_THREAD_DEFAULT_STREAM"):
            self._info("Using per-thread default stream")
            self._definitions.append(CompileDefinition(
                name="CUDA_API_PER_THREAD_DEFAULT_STREAM", scope=DefinitionScope.GLOBAL))

        if self._consume("CUDA_STATIC_RUNTIME"):
            self._info("Enabling static linking of cudart")
            self._cuda_runtime = LinkLibrary(
                name="CUDA::cudart_static", visibility=Visibility.PUBLIC, linkage=Linkage.STATIC)
        else:
            self._cuda_runtime = LinkLibrary(
                name="CUDA::cudart", visibility=Visibility.PUBLIC, linkage=Linkage.DYNAMIC)

        if self._consume("USE_NVTX"):
            self._info("Using Nvidia Tools Extension")
        else:
            self._definitions.append(CompileDefinition(name="NVTX_DISABLE", scope=DefinitionScope.PUBLIC))

        level = self._consume("LOGGING_LEVEL")
        try:
            self._definitions.append(logging_level_definition(LoggingLevel[str(level)]))
        except KeyError as exc:
            raise ConfigurationError(
                f"Unrecognized logging level '{level}'",
                hint=f"Choose one of: {', '.join(l.name for l in LoggingLevel)}",
            ) from exc

        if self._consume("BUILD_TESTS"):
            self._subsystems.append(self._optional_subsystem(
                "tests", self.project.tests_dir, self.toolchain.gtest_root,
                "Google C++ Testing Framework (Google Test)", "automated tests are disabled"))

        if self._consume("BUILD_BENCHMARKS"):
            self._subsystems.append(self._optional_subsystem(
                "benchmarks", self.project.benchmarks_dir, self.toolchain.gbench_root,
                "Google C++ Benchmarking Framework (Google Benchmark)", "benchmarks are disabled"))

    def include_link_stage(self,
                           specs: Mapping[str, DependencySpec],
                           dependencies: Mapping[str, ResolvedDependency]) -> None:
        self._enter(PlanStage.INCLUDE_LINK)

        self._public_includes.append(str(self.source_dir / self.project.include_dir))
        if self._cuda_runtime is not None:
            self._links.append(self._cuda_runtime)

        for name, spec in specs.items():
            resolved = dependencies.get(name)
            if resolved is None:
                raise ConfigurationError(f"Dependency {name} was declared but never resolved")

            include_dir = str(resolved.include_dir)
            if spec.include_visibility == Visibility.PUBLIC:
                self._public_includes.append(include_dir)
            else:
                self._private_includes.append(include_dir)

            self._sources.extend(resolved.source_files)

            for header in spec.detail_headers:
                self._configured_files.append(ConfiguredFile(
                    source=resolved.include_dir / header,
                    destination=self.source_dir / self.project.detail_include_dir / header,
                ))

            if spec.link_target:
                self._links.append(LinkLibrary(
                    name=spec.link_target, visibility=spec.link_visibility, linkage=spec.link_linkage))

        self._properties["BUILD_RPATH"] = self.project.build_rpath

    def install_stage(self) -> None:
        self._enter(PlanStage.INSTALL)

        self._install_rules.append(InstallRule(
            kind="target", source=self.project.name, destination=self.project.library_destination))
        self._install_rules.append(InstallRule(
            kind="directory",
            source=str(self.source_dir / self.project.header_tree),
            destination=self.project.header_destination,
        ))
        self._custom_targets.append(CustomTarget(
            name=f"{self.project.name}_doc",
            command=self.project.doc_command,
            working_directory=self.source_dir / self.project.doc_dir,
        ))

    def finalize(self) -> TargetPlan:
        self._enter(PlanStage.FINALIZED)

        unused = [name for name in self.options.as_dict() if name not in self._consumed]
        if unused and self.logger:
            self.logger.debug(f"Options not used by the plan: {', '.join(unused)}")

        return TargetPlan(
            name=self.project.name,
            version=self.project.version,
            build_type=self._build_type,
            cxx_standard=self.project.cxx_standard,
            c_compiler=self.toolchain.c_compiler,
            cxx_compiler=self.toolchain.cxx_compiler,
            cxx_flags=tuple(self._cxx_flags),
            cuda_flags=tuple(self._cuda_flags),
            sources=tuple(self._sources),
            public_include_dirs=tuple(self._public_includes),
            private_include_dirs=tuple(self._private_includes),
            link_libraries=tuple(self._links),
            compile_definitions=tuple(self._definitions),
            properties=tuple(self._properties.items()),
            subsystems=tuple(self._subsystems),
            configured_files=tuple(self._configured_files),
            custom_targets=tuple(self._custom_targets),
            install_rules=tuple(self._install_rules),
        )

    def _optional_subsystem(self, name: str, directory: str, root: Optional[Path],
                            framework: str, disabled: str) -> Subsystem:
        if root is not None:
            self._info(f"{framework} found in {root}")
            return Subsystem(name=name, directory=self.source_dir / directory, enabled=True)

        reason = f"{framework} not found: {disabled}."
        if self.logger:
            self.logger.warning(reason)
        return Subsystem(name=name, directory=self.source_dir / directory, enabled=False, reason=reason)

    def _enter(self, stage: PlanStage) -> None:
        if stage != self._stage + 1:
            raise ConfigurationError(
                f"Cannot run the {stage.name.lower()} stage after the {self._stage.name.lower()} stage",
                hint="Stages run once each: toolchain, features, include/link, install, finalize.",
            )
        self._stage = stage

    def _consume(self, name: str) -> OptionValue:
        if name in self._consumed:
            raise ConfigurationError(f"Option {name} was already consumed by an earlier stage")
        if name not in self.options:
            raise ConfigurationError(f"Option {name} has no resolved value")
        self._consumed.add(name)
        return self.options[name]

    def _info(self, msg: str) -> None:
        if self.logger:
            self.logger.info(msg)


__all__ = ["AssemblyPlanner", "PlanStage", "logging_level_definition"]
