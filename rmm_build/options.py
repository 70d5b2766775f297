"""Option resolution and the persisted option cache"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

from .errors import ConfigurationError
from .models import OptionKind, OptionSet, OptionSource, OptionSpec, OptionValue, ResolvedOption
from .utils import Logger, write_json_atomic

ENV_PREFIX = "RMM_"
CACHE_FILENAME = "rmm_build_cache.json"

TRUE_STRINGS = {"1", "ON", "TRUE", "YES", "Y"}
FALSE_STRINGS = {"0", "OFF", "FALSE", "NO", "N"}


def parse_option_value(spec: OptionSpec, raw: Any) -> OptionValue:
    """Convert a raw user, environment or cache value to the option's type.

    Booleans accept the usual CMake spellings case-insensitively and enum
    values are normalised to the declared spelling. Anything else raises
    :class:`ConfigurationError`.
    """
    if spec.kind == OptionKind.BOOL:
        if isinstance(raw, bool):
            return raw
        text = str(raw).strip().upper()
        if text in TRUE_STRINGS:
            return True
        if text in FALSE_STRINGS:
            return False
        raise ConfigurationError(
            f"Invalid value '{raw}' for boolean option {spec.name}",
            hint="Use ON/OFF, TRUE/FALSE, YES/NO or 1/0.",
        )

    text = str(raw).strip()
    if spec.kind == OptionKind.ENUM:
        for choice in spec.choices:
            if choice.lower() == text.lower():
                return choice
        raise ConfigurationError(
            f"Unrecognized value '{raw}' for option {spec.name}",
            hint=f"Choose one of: {', '.join(spec.choices)}",
        )
    return text


def _is_unset(raw: Any) -> bool:
    return raw is None or (isinstance(raw, str) and not raw.strip())


class OptionCache:
    """Option values persisted in the build tree between passes.

    Only consulted once at startup; the pass itself works on an explicit
    :class:`OptionSet`.
    """

    def __init__(self, build_dir: Path, logger: Optional[Logger] = None):
        self.path = Path(build_dir) / CACHE_FILENAME
        self.logger = logger

    def load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, 'r', encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigurationError(
                "Option cache is unreadable",
                hint="Delete the cache file to reconfigure from defaults.",
                context={"path": str(self.path), "error": str(exc)},
            ) from exc
        options = data.get("options", {}) if isinstance(data, dict) else None
        if not isinstance(options, dict):
            raise ConfigurationError(
                "Option cache has invalid structure",
                hint="Delete the cache file to reconfigure from defaults.",
                context={"path": str(self.path)},
            )
        return options

    def save(self, option_set: OptionSet, specs: Iterable[OptionSpec]) -> Path:
        persisted = {spec.name for spec in specs if spec.persist}
        payload = {
            "options": {
                name: value for name, value in option_set.as_dict().items() if name in persisted
            }
        }
        if self.logger:
            self.logger.debug(f"Writing option cache to {self.path}")
        return write_json_atomic(self.path, payload)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


class OptionResolver:
    """Chooses exactly one value per declared option"""

    def __init__(self, specs: Iterable[OptionSpec], logger: Optional[Logger] = None):
        self.specs = {spec.name: spec for spec in specs}
        self.logger = logger

    def resolve(self,
                overrides: Optional[Mapping[str, Any]] = None,
                environ: Optional[Mapping[str, str]] = None,
                cache: Optional[Mapping[str, Any]] = None) -> OptionSet:
        """
        Resolve every option by priority: override > environment > cache > default

        Args:
            overrides: Explicit user values, usually from ``-D NAME=VALUE``
            environ: Environment, read through ``RMM_<NAME>`` variables
            cache: Values persisted by a previous pass

        Returns:
            The finalized option set

        Raises:
            ConfigurationError: On unknown options, invalid values, or
                options with neither a value nor a declared default
        """
        overrides = dict(overrides or {})
        environ = environ or {}
        cache = cache or {}

        unknown = sorted(name for name in overrides if name not in self.specs)
        if unknown:
            raise ConfigurationError(
                f"Unknown option(s): {', '.join(unknown)}",
                hint=f"Known options: {', '.join(self.specs)}",
            )

        resolved = []
        missing = []
        for name, spec in self.specs.items():
            candidates = (
                (OptionSource.OVERRIDE, overrides.get(name)),
                (OptionSource.ENVIRONMENT, environ.get(f"{ENV_PREFIX}{name}")),
                (OptionSource.CACHE, cache.get(name)),
            )
            option = None
            for source, raw in candidates:
                if _is_unset(raw):
                    continue
                try:
                    value = parse_option_value(spec, raw)
                except ConfigurationError as exc:
                    exc.context.setdefault("source", source.value)
                    raise
                option = ResolvedOption(name=name, value=value, source=source)
                break

            if option is None:
                if spec.default is None:
                    missing.append(name)
                    continue
                option = ResolvedOption(name=name, value=spec.default, source=OptionSource.DEFAULT)
                if spec.kind == OptionKind.ENUM:
                    self._log(f"Setting {spec.display_name} to '{spec.default}' since none specified.")
            elif spec.kind == OptionKind.ENUM:
                self._log(f"Setting {spec.display_name} to '{option.value}'")
            resolved.append(option)

        if missing:
            raise ConfigurationError(
                f"No value for option(s) without a default: {', '.join(missing)}",
                hint="Pass them with -D NAME=VALUE.",
            )
        return OptionSet(options=tuple(resolved))

    def _log(self, msg: str) -> None:
        if self.logger:
            self.logger.info(msg)


def parse_definitions(definitions: Iterable[str]) -> dict[str, str]:
    """Parse ``NAME=VALUE`` (or ``NAME:TYPE=VALUE``) command line definitions"""
    parsed: dict[str, str] = {}
    for item in definitions:
        name, sep, value = item.partition("=")
        if not sep or not name:
            raise ConfigurationError(
                f"Malformed definition '{item}'",
                hint="Use -D NAME=VALUE.",
            )
        name = name.split(":", 1)[0].strip()
        parsed[name] = value
    return parsed


__all__ = [
    "CACHE_FILENAME",
    "ENV_PREFIX",
    "OptionCache",
    "OptionResolver",
    "parse_definitions",
    "parse_option_value",
]
