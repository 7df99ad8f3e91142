"""
Config system - Layered typed binder configuration with validation.

Merge precedence (later overrides earlier):
defaults < JSON config files < .env file < FORMBIND_* environment < overrides
"""

from typing import Any, Dict, Optional, Type, get_type_hints, get_origin, get_args
from dataclasses import dataclass, field, fields, is_dataclass, asdict
from pathlib import Path
import json
import logging
import os
import types

from dotenv import dotenv_values

from .binding.decoders import (
    CONTENT_TYPE_FORM_URL,
    CONTENT_TYPE_JSON,
    CONTENT_TYPE_MULTIPART,
    CONTENT_TYPE_XML,
    DEFAULT_MAX_MEMORY,
    SPLIT_SYMBOL,
    Decoders,
    FormURLDecoder,
    JSONDecoder,
    MultipartDecoder,
    XMLDecoder,
)
from .binding.binder import Binder
from .binding.fields import FieldCache
from .binding.formatters import Formatters
from .binding.parsers import Parsers
from .faults import ConfigInvalidFault

logger = logging.getLogger("formbind.config")

ENV_PREFIX = "FORMBIND_"


@dataclass
class RequestLimits:
    """Transport limits handed to ``Request``."""
    max_body_size: int = 10_485_760
    max_field_count: int = 1000
    max_file_size: int = 2_147_483_648
    form_memory_threshold: int = 1024 * 1024
    json_max_size: int = 10_485_760
    json_max_depth: int = 64

    def as_kwargs(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BinderConfig:
    """Settings shared by every decoder built from this configuration."""
    skip_filled: bool = True
    split: bool = True
    split_symbol: str = SPLIT_SYMBOL
    max_memory: int = DEFAULT_MAX_MEMORY
    form_content_type: str = CONTENT_TYPE_FORM_URL
    multipart_content_type: str = CONTENT_TYPE_MULTIPART
    json_content_type: str = CONTENT_TYPE_JSON
    xml_content_type: str = CONTENT_TYPE_XML
    request: RequestLimits = field(default_factory=RequestLimits)

    def validate(self) -> "BinderConfig":
        """
        Check cross-field constraints.

        Raises:
            ConfigInvalidFault: On the first invalid value
        """
        if not self.split_symbol:
            raise ConfigInvalidFault("split_symbol", "must not be empty")
        if self.max_memory <= 0:
            raise ConfigInvalidFault("max_memory", "must be positive")
        for name, value in self.request.as_kwargs().items():
            if value <= 0:
                raise ConfigInvalidFault(f"request.{name}", "must be positive")
        return self


class ConfigLoader:
    """
    Loads and merges binder configuration from multiple sources.

    Nested keys use a double underscore in environment variables:
    ``FORMBIND_REQUEST__MAX_BODY_SIZE=1048576``.
    """

    def __init__(self, env_prefix: str = ENV_PREFIX):
        self.env_prefix = env_prefix
        self.config_data: Dict[str, Any] = {}

    @classmethod
    def load(
        cls,
        paths: Optional[list[str]] = None,
        env_prefix: str = ENV_PREFIX,
        env_file: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> "ConfigLoader":
        """
        Load configuration from every source, in precedence order.

        Args:
            paths: JSON config files (glob patterns supported)
            env_prefix: Prefix for environment variables
            env_file: Path to .env file
            overrides: Manual overrides (highest precedence)
        """
        loader = cls(env_prefix=env_prefix)

        for pattern in paths or []:
            loader._load_from_files(pattern)

        if env_file:
            loader._load_env_file(env_file)

        loader._load_from_env()

        if overrides:
            loader._merge_dict(loader.config_data, overrides)

        return loader

    def _load_from_files(self, pattern: str):
        from glob import glob

        for path_str in sorted(glob(pattern)):
            path = Path(path_str)
            if path.suffix == ".json":
                self._load_json_file(path)

    def _load_json_file(self, path: Path):
        """Load config from JSON file."""
        try:
            with open(path) as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigInvalidFault(str(path), f"invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise ConfigInvalidFault(str(path), "top level must be an object")

        logger.debug("Loaded binder config from %s", path)
        self._merge_dict(self.config_data, data)

    def _load_env_file(self, path: str):
        """Load prefixed keys from a .env file."""
        env_path = Path(path)
        if not env_path.exists():
            return

        for key, value in dotenv_values(env_path).items():
            if value is not None and key.startswith(self.env_prefix):
                self._set_nested(key, value)

    def _load_from_env(self):
        for key, value in os.environ.items():
            if key.startswith(self.env_prefix):
                self._set_nested(key, value)

    def _set_nested(self, key: str, value: str):
        """Convert FORMBIND_REQUEST__MAX_BODY_SIZE to a nested dict."""
        key = key[len(self.env_prefix):]
        parts = key.lower().split("__")

        current = self.config_data
        for part in parts[:-1]:
            if not isinstance(current.get(part), dict):
                current[part] = {}
            current = current[part]

        current[parts[-1]] = self._parse_value(value)

    def _parse_value(self, value: str) -> Any:
        """Parse string value to appropriate type."""
        if value.lower() in ("true", "yes", "on"):
            return True
        if value.lower() in ("false", "no", "off"):
            return False

        try:
            if "." in value:
                return float(value)
            return int(value)
        except ValueError:
            pass

        if value.startswith(("{", "[")):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                pass

        return value

    def _merge_dict(self, target: dict, source: dict):
        """Deep merge source into target."""
        for key, value in source.items():
            if key in target and isinstance(target[key], dict) and isinstance(value, dict):
                self._merge_dict(target[key], value)
            else:
                target[key] = value

    def get(self, path: str, default: Any = None) -> Any:
        """Get config value by dot-separated path."""
        current = self.config_data

        for part in path.split("."):
            if isinstance(current, dict) and part in current:
                current = current[part]
            else:
                return default

        return current

    def get_binder_config(self) -> BinderConfig:
        """Build and validate a BinderConfig from the merged data."""
        return self._instantiate_dataclass(BinderConfig, self.config_data).validate()

    def _instantiate_dataclass(self, config_class: Type, data: dict, prefix: str = ""):
        """Instantiate dataclass config with validation."""
        hints = get_type_hints(config_class)
        kwargs = {}

        for field_info in fields(config_class):
            name = field_info.name
            key = f"{prefix}{name}"
            expected = hints.get(name, field_info.type)

            if name not in data:
                continue

            value = data[name]

            if is_dataclass(expected):
                if not isinstance(value, dict):
                    raise ConfigInvalidFault(key, "expected a section")
                kwargs[name] = self._instantiate_dataclass(expected, value, prefix=f"{key}.")
                continue

            if not self._check_type(value, expected):
                raise ConfigInvalidFault(
                    key, f"expected {getattr(expected, '__name__', expected)}, got {type(value).__name__}"
                )

            kwargs[name] = value

        return config_class(**kwargs)

    def _check_type(self, value: Any, expected_type: Type) -> bool:
        """Basic type checking."""
        origin = get_origin(expected_type)
        if origin is types.UnionType or str(origin) == "typing.Union":
            args = get_args(expected_type)
            if value is None:
                return True
            if args:
                return self._check_type(value, args[0])

        if origin:
            return isinstance(value, origin)

        # bool is an int subclass; never accept it for numeric settings
        if expected_type in (int, float) and isinstance(value, bool):
            return False
        if expected_type is float and isinstance(value, int):
            return True

        try:
            return isinstance(value, expected_type)
        except TypeError:
            return True

    def to_dict(self) -> dict:
        return self.config_data.copy()


def build_decoders(config: Optional[BinderConfig] = None, field_cache: Optional[FieldCache] = None) -> Decoders:
    """
    Build the standard decoder registry from a BinderConfig.

    All four decoders share one FieldCache.
    """
    config = config or BinderConfig()
    cache = field_cache if field_cache is not None else FieldCache()
    options = {
        "skip_filled": config.skip_filled,
        "split": config.split,
        "split_symbol": config.split_symbol,
        "field_cache": cache,
    }

    return Decoders(
        FormURLDecoder(content_type=config.form_content_type, **options),
        MultipartDecoder(
            content_type=config.multipart_content_type,
            max_memory=config.max_memory,
            **options,
        ),
        JSONDecoder(content_type=config.json_content_type, **options),
        XMLDecoder(content_type=config.xml_content_type, **options),
    )


def build_binder(config: Optional[BinderConfig] = None, field_cache: Optional[FieldCache] = None) -> Binder:
    """Build a Binder whose decoders and parsers follow one BinderConfig."""
    config = config or BinderConfig()
    cache = field_cache if field_cache is not None else FieldCache()

    return Binder(
        decoders=build_decoders(config, cache),
        parsers=Parsers.default(
            skip_filled=config.skip_filled,
            split=config.split,
            split_symbol=config.split_symbol,
            field_cache=cache,
        ),
        formatters=Formatters.default(field_cache=cache),
    )
