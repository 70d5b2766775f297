"""Contains models shared by the fetch manager and the target planner"""

from __future__ import annotations

from enum import Enum, IntEnum
from pathlib import Path
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

OptionValue = Union[bool, str]


class Visibility(str, Enum):
    """Whether a requirement propagates to consumers of the library"""
    PUBLIC = "public"
    PRIVATE = "private"


class Linkage(str, Enum):
    """How a linked library ends up in the produced artifact"""
    STATIC = "static"
    DYNAMIC = "dynamic"


class DefinitionScope(str, Enum):
    """Where a preprocessor definition applies"""
    PUBLIC = "public"
    PRIVATE = "private"
    GLOBAL = "global"
    """Applies to every target in the tree, tests and benchmarks included"""


class BuildType(str, Enum):
    """Closed set of supported build types"""
    DEBUG = "Debug"
    RELEASE = "Release"
    MIN_SIZE_REL = "MinSizeRel"
    REL_WITH_DEB_INFO = "RelWithDebInfo"


class LoggingLevel(IntEnum):
    """spdlog severities, ordered from most to least verbose"""
    TRACE = 0
    DEBUG = 1
    INFO = 2
    WARN = 3
    ERROR = 4
    CRITICAL = 5
    OFF = 6

    @property
    def macro(self) -> str:
        """Name of the spdlog macro holding this level's numeric value"""
        return f"SPDLOG_LEVEL_{self.name}"


class DependencySpec(BaseModel):
    """Declaration of one third-party source dependency"""
    model_config = ConfigDict(frozen=True)

    name: str = Field(pattern=r"^[A-Za-z0-9_.-]+$")
    """Unique dependency name, also used for staging directories"""
    repository: str = Field(min_length=1)
    """Git repository URI"""
    revision: str = Field(min_length=1)
    """Pinned tag, branch or full commit SHA"""
    shallow: bool = False
    """Fetch only the pinned revision's history"""
    populate_only: bool = False
    """Stage sources without building the dependency as a subcomponent"""
    include_subdir: str = ""
    """Header root relative to the source tree"""
    sources: tuple[str, ...] = ()
    """Source files compiled directly into the library"""
    include_visibility: Visibility = Visibility.PRIVATE
    """Public when the headers are part of the installed API surface"""
    detail_headers: tuple[str, ...] = ()
    """Headers copied into the library's own detail include directory"""
    link_target: Optional[str] = None
    """Imported target the library links against"""
    link_visibility: Visibility = Visibility.PUBLIC
    link_linkage: Linkage = Linkage.STATIC


class ResolvedDependency(BaseModel):
    """Result of staging a dependency on disk"""
    model_config = ConfigDict(frozen=True)

    name: str
    revision: str
    commit: Optional[str] = None
    """Commit the pinned revision resolved to"""
    source_dir: Path
    build_dir: Optional[Path] = None
    """Binary directory, absent for populate-only dependencies"""
    include_dir: Path
    source_files: tuple[Path, ...] = ()


class OptionKind(str, Enum):
    """Value type of a configuration option"""
    BOOL = "bool"
    ENUM = "enum"
    STRING = "string"


class OptionSource(str, Enum):
    """Where a resolved option value came from, highest priority first"""
    OVERRIDE = "override"
    ENVIRONMENT = "environment"
    CACHE = "cache"
    DEFAULT = "default"


class OptionSpec(BaseModel):
    """Declaration of one user-facing configuration option"""
    model_config = ConfigDict(frozen=True)

    name: str = Field(pattern=r"^[A-Z][A-Z0-9_]*$")
    kind: OptionKind
    default: Optional[OptionValue] = None
    """Declared default; an option without one must be supplied by the user"""
    choices: tuple[str, ...] = ()
    """Allowed values for enum options"""
    description: str = ""
    label: str = ""
    """Human readable name used in status messages"""
    persist: bool = True
    """Write the resolved value back to the option cache"""

    @property
    def display_name(self) -> str:
        return self.label or self.name

    @model_validator(mode="after")
    def _check_default(self) -> "OptionSpec":
        """Ensure defaults match the declared kind"""
        if self.kind == OptionKind.ENUM and not self.choices:
            raise ValueError(f"Enum option {self.name} declares no choices")
        if self.default is None:
            return self
        if self.kind == OptionKind.BOOL and not isinstance(self.default, bool):
            raise ValueError(f"Option {self.name} needs a boolean default")
        if self.kind == OptionKind.ENUM and self.default not in self.choices:
            raise ValueError(f"Default of {self.name} is not one of {', '.join(self.choices)}")
        return self


class ResolvedOption(BaseModel):
    """A single option value together with its origin"""
    model_config = ConfigDict(frozen=True)

    name: str
    value: OptionValue
    source: OptionSource


class OptionSet(BaseModel):
    """Every declared option with exactly one resolved value"""
    model_config = ConfigDict(frozen=True)

    options: tuple[ResolvedOption, ...] = ()

    def __contains__(self, name: str) -> bool:
        return any(option.name == name for option in self.options)

    def __getitem__(self, name: str) -> OptionValue:
        return self.resolved(name).value

    def resolved(self, name: str) -> ResolvedOption:
        for option in self.options:
            if option.name == name:
                return option
        raise KeyError(name)

    def source(self, name: str) -> OptionSource:
        return self.resolved(name).source

    def as_dict(self) -> dict[str, OptionValue]:
        return {option.name: option.value for option in self.options}


class ProjectSpec(BaseModel):
    """Static description of the library being configured"""
    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    cxx_standard: int = 14
    include_dir: str = "include"
    """Public header root, relative to the source directory"""
    header_tree: str = "include/rmm"
    """Directory installed as the public header tree"""
    detail_include_dir: str = "include/rmm/detail"
    tests_dir: str = "tests"
    benchmarks_dir: str = "benchmarks"
    doc_dir: str = "doxygen"
    doc_command: tuple[str, ...] = ("doxygen", "Doxyfile")
    build_rpath: str = "$ORIGIN"
    library_destination: str = "lib"
    header_destination: str = "include"


class Toolchain(BaseModel):
    """Compilers and frameworks discovered on the host"""
    model_config = ConfigDict(frozen=True)

    cuda_root: Optional[Path] = None
    nvcc: Optional[Path] = None
    cuda_version: Optional[str] = None
    c_compiler: Optional[str] = None
    cxx_compiler: Optional[str] = None
    cxx_compiler_id: str = "Unknown"
    """GNU, Clang or Unknown"""
    gtest_root: Optional[Path] = None
    gbench_root: Optional[Path] = None

    @property
    def gtest_found(self) -> bool:
        return self.gtest_root is not None

    @property
    def gbench_found(self) -> bool:
        return self.gbench_root is not None


class CompileDefinition(BaseModel):
    """A preprocessor definition attached to the target or the whole tree"""
    model_config = ConfigDict(frozen=True)

    name: str
    value: Optional[str] = None
    scope: DefinitionScope = DefinitionScope.PUBLIC

    def __str__(self) -> str:
        if self.value is None:
            return self.name
        return f"{self.name}={self.value}"


class LinkLibrary(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    visibility: Visibility
    linkage: Linkage


class Subsystem(BaseModel):
    """Optional subdirectory such as tests or benchmarks"""
    model_config = ConfigDict(frozen=True)

    name: str
    directory: Path
    enabled: bool
    reason: Optional[str] = None
    """Why a requested subsystem was disabled"""


class ConfiguredFile(BaseModel):
    """File copied verbatim into the source tree during configuration"""
    model_config = ConfigDict(frozen=True)

    source: Path
    destination: Path


class CustomTarget(BaseModel):
    """Command run on demand by an external collaborator"""
    model_config = ConfigDict(frozen=True)

    name: str
    command: tuple[str, ...]
    working_directory: Path


class InstallRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["target", "directory"]
    source: str
    """Target name or directory path"""
    destination: str


class TargetPlan(BaseModel):
    """Finalized description of the shared library target"""
    model_config = ConfigDict(frozen=True)

    name: str
    kind: Literal["shared"] = "shared"
    version: str
    build_type: BuildType
    cxx_standard: int
    c_compiler: Optional[str] = None
    cxx_compiler: Optional[str] = None
    cxx_flags: tuple[str, ...] = ()
    cuda_flags: tuple[str, ...] = ()
    sources: tuple[Path, ...] = ()
    public_include_dirs: tuple[str, ...] = ()
    private_include_dirs: tuple[str, ...] = ()
    link_libraries: tuple[LinkLibrary, ...] = ()
    compile_definitions: tuple[CompileDefinition, ...] = ()
    properties: tuple[tuple[str, str], ...] = ()
    """Target properties as (name, value) pairs"""
    subsystems: tuple[Subsystem, ...] = ()
    configured_files: tuple[ConfiguredFile, ...] = ()
    custom_targets: tuple[CustomTarget, ...] = ()
    install_rules: tuple[InstallRule, ...] = ()

    def definition(self, name: str) -> Optional[CompileDefinition]:
        for definition in self.compile_definitions:
            if definition.name == name:
                return definition
        return None

    def property_value(self, name: str) -> Optional[str]:
        for key, value in self.properties:
            if key == name:
                return value
        return None

    def subsystem(self, name: str) -> Optional[Subsystem]:
        for subsystem in self.subsystems:
            if subsystem.name == name:
                return subsystem
        return None

    def link_library(self, name: str) -> Optional[LinkLibrary]:
        for library in self.link_libraries:
            if library.name == name:
                return library
        return None
