"""
Configuration management for the configure pass
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError

from ..errors import ConfigurationError
from ..models import DependencySpec, OptionSpec, ProjectSpec

DEFAULT_CONFIG_DIR = Path(__file__).resolve().parent


class ConfigLoader:
    """Loads dependency, option and project declarations"""

    def __init__(self, config_dir: Optional[Path] = None):
        """
        Initialize configuration loader

        Args:
            config_dir: Directory containing configuration files, defaults
                to the declarations shipped with the package
        """
        self.config_dir = Path(config_dir or DEFAULT_CONFIG_DIR)
        self.deps_config = self._load_yaml("dependencies.yaml")
        self.options_config = self._load_yaml("options.yaml")

    def _load_yaml(self, filename: str) -> Dict[str, Any]:
        path = self.config_dir / filename
        if not path.exists():
            raise ConfigurationError(f"Configuration file not found: {path}")

        try:
            with open(path, 'r', encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ConfigurationError(
                f"Configuration file is not valid YAML: {path}",
                hint=str(exc),
            ) from exc

        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration file must contain a mapping: {path}")
        return data

    def get_dependencies(self) -> List[str]:
        """Get list of all dependency names in declaration order"""
        return list(self.deps_config.get("dependencies", {}).keys())

    def has_dependency(self, name: str) -> bool:
        return name in self.deps_config.get("dependencies", {})

    def get_dependency_spec(self, name: str) -> DependencySpec:
        """
        Get the declaration of a specific dependency

        Args:
            name: Dependency name

        Returns:
            Validated dependency declaration
        """
        deps = self.deps_config.get("dependencies", {})
        if name not in deps:
            raise ConfigurationError(
                f"Unknown dependency: {name}",
                hint=f"Available: {', '.join(self.get_dependencies())}",
            )
        return self._validate(DependencySpec, {"name": name, **(deps[name] or {})},
                              f"dependency {name}")

    def get_dependency_specs(self) -> List[DependencySpec]:
        return [self.get_dependency_spec(name) for name in self.get_dependencies()]

    def get_option_specs(self) -> List[OptionSpec]:
        """Get all option declarations in declaration order"""
        options = self.options_config.get("options", {})
        if not isinstance(options, dict):
            raise ConfigurationError("`options` must be a mapping of option names")
        return [
            self._validate(OptionSpec, {"name": name, **(body or {})}, f"option {name}")
            for name, body in options.items()
        ]

    def get_project_spec(self) -> ProjectSpec:
        project = self.options_config.get("project")
        if not isinstance(project, dict):
            raise ConfigurationError("`project` section is missing from options.yaml")
        return self._validate(ProjectSpec, project, "project")

    def get_fetch_option(self, key: str, default: Any = None) -> Any:
        """
        Get a fetch transport option

        Args:
            key: Option key
            default: Default value if not found

        Returns:
            Option value
        """
        options = self.deps_config.get("fetch_options", {}) or {}
        return options.get(key, default)

    @staticmethod
    def _validate(model, payload: Dict[str, Any], what: str):
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            raise ConfigurationError(
                f"Invalid declaration for {what}",
                hint=str(exc),
            ) from exc


__all__ = ["ConfigLoader", "DEFAULT_CONFIG_DIR"]
