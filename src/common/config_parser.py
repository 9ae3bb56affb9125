#!/usr/bin/env python3
"""
Read a configuration file in the `.ini` format and validate it against
a JSON schema. A commented default `.ini` file is generated from the
schema when the configuration file doesn't exist.

The schema mirrors the `.ini` structure: one block per section and one
inner block per key, holding the rules of the value.

```json
{
    "store": {
        "backend": {
            "type": "str",
            "default": "workbook",
            "choices": ["workbook", "google"],
            "comment": "Ledger storage backend"
        }
    }
}
```

Supported rules:
- type: `int`, `float`, `str` or `bool`, the only mandatory rule
- required: the value cannot be empty (the key can never be missing)
- default: value written in the generated default file
- comment: help written above the key in the generated default file
- min/max: range of `int` and `float` values
- choices: list of accepted values

---
TaskLedger - Sheet-backed task time tracking

Author: Bastian Cerf
Copyright (C) 2025 Mecacerf SA
License: AGPL-3.0 <https://www.gnu.org/licenses/>
"""

# Standard libraries
import configparser
import json
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Optional, TextIO

logger = logging.getLogger(__name__)

ConfigView = MappingProxyType[str, MappingProxyType[str, Any]]


class ConfigError(Exception):
    """
    General configuration error. It's the only error raised by this
    module.
    """

    pass


def _str_to_bool(text: str) -> bool:
    """
    Raises:
        ValueError: The text isn't a boolean literal.
    """
    text = text.strip().lower()
    if text in {"true", "1", "yes", "on"}:
        return True
    if text in {"false", "0", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean '{text}'")


def _to_literal(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class SchemaRule:
    """
    Validation rules of one key, parsed from its schema block.
    """

    # Map the value types with their converting function
    _CONVERTERS: dict[str, Callable[[str], Any]] = {
        "int": int,
        "float": float,
        "str": str,
        "bool": _str_to_bool,
    }

    # Accepted rule names and their expected JSON types (`None` for any)
    _FIELDS: dict[str, Optional[tuple[type, ...]]] = {
        "type": (str,),
        "required": (bool,),
        "default": None,
        "comment": (str,),
        "min": (int, float),
        "max": (int, float),
        "choices": (list,),
    }

    def __init__(self, section: str, key: str, block: dict[str, Any]):
        """
        Raises:
            ConfigError: The block is malformed.
        """
        self._where = f"[{section}] {key}"

        if not isinstance(block, dict):
            raise ConfigError(f"Schema of {self._where} must be an object.")

        unknown = set(block) - set(self._FIELDS)
        if unknown:
            raise ConfigError(
                f"Unrecognized rule(s) {', '.join(sorted(unknown))} for {self._where}."
            )

        for name, types in self._FIELDS.items():
            if name in block and types and not isinstance(block[name], types):
                raise ConfigError(
                    f"Rule '{name}' of {self._where} has the wrong type "
                    f"'{type(block[name]).__name__}'."
                )

        if block.get("type") not in self._CONVERTERS:
            raise ConfigError(
                f"Missing or unrecognized type '{block.get('type')}' for "
                f"{self._where}."
            )

        self.vartype: str = block["type"]
        self.required: bool = block.get("required", False)
        self.default: Any = block.get("default")
        self.comment: Optional[str] = block.get("comment")
        self.min: Optional[float] = block.get("min")
        self.max: Optional[float] = block.get("max")
        self.choices: Optional[list[Any]] = block.get("choices")

    def convert(self, text: str) -> Any:
        """
        Validate the text value and convert it to the rule type.

        Returns:
            Any: The converted value, `None` for an allowed empty value.

        Raises:
            ConfigError: The value breaks a rule.
        """
        text = text.strip()
        if not text:
            if self.required:
                raise ConfigError(f"Value of {self._where} is required.")
            return None

        try:
            value = self._CONVERTERS[self.vartype](text)
        except ValueError:
            raise ConfigError(
                f"Value '{text}' of {self._where} is not a valid {self.vartype}."
            ) from None

        if self.vartype in ("int", "float"):
            if self.min is not None and value < self.min:
                raise ConfigError(
                    f"Value {value} of {self._where} is lower than {self.min}."
                )
            if self.max is not None and value > self.max:
                raise ConfigError(
                    f"Value {value} of {self._where} is greater than {self.max}."
                )

        if self.choices is not None and value not in self.choices:
            raise ConfigError(
                f"Value '{value}' of {self._where} must be one of "
                f"{', '.join(str(c) for c in self.choices)}."
            )

        return value


class ConfigParser:
    """
    Loads a `.ini` configuration and validates it against a JSON schema.
    It provides a read-only view on the converted values.
    """

    def __init__(
        self,
        schema: str | TextIO,
        config: str | TextIO,
        name: Optional[str] = None,
        gen_default: bool = True,
    ):
        """
        Args:
            schema (str | TextIO): Path to the schema file (.json) or an
                opened file-like object.
            config (str | TextIO): Path to the configuration file (.ini)
                or an opened file-like object.
            name (Optional[str]): Name of the configuration used in
                messages. Required with a file-like `config`.
            gen_default (bool): Generate the default configuration file
                when `config` is a path to a non-existent file.

        Raises:
            ConfigError: Any error related to loading or validation.
        """
        if name:
            self._name = name
        elif isinstance(config, str):
            self._name = Path(config).name
        else:
            raise ConfigError("A configuration name is required.")

        self._rules = self.__load_schema(schema)

        if gen_default and isinstance(config, str) and not Path(config).exists():
            try:
                Path(config).parent.mkdir(parents=True, exist_ok=True)
                with open(config, "x", encoding="utf-8") as file:
                    self.generate_default(file)
            except OSError as e:
                raise ConfigError(
                    f"Error generating the default configuration '{self._name}'."
                ) from e
            logger.info(f"Default configuration file created under '{config}'.")

        self._data = self.__validate(self.__load_config(config))

    @property
    def name(self) -> str:
        return self._name

    def __load_schema(self, source: str | TextIO) -> dict[str, dict[str, SchemaRule]]:
        try:
            if isinstance(source, str):
                with open(source, "r", encoding="utf-8") as file:
                    schema = json.load(file)
            else:
                schema = json.load(source)
        except FileNotFoundError:
            raise ConfigError(f"Schema file not found for '{self._name}'.") from None
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Cannot read the schema of '{self._name}'.") from e

        if not isinstance(schema, dict):
            raise ConfigError(f"Schema of '{self._name}' must be an object.")

        return {
            section: {
                key: SchemaRule(section, key, block) for key, block in keys.items()
            }
            for section, keys in schema.items()
        }

    def __load_config(self, source: str | TextIO) -> configparser.ConfigParser:
        config = configparser.ConfigParser(interpolation=None)
        try:
            if isinstance(source, str):
                with open(source, encoding="utf-8") as file:
                    config.read_file(file)
            else:
                config.read_file(source)
        except configparser.Error as e:
            raise ConfigError(f"Cannot parse '{self._name}'.") from e
        except OSError as e:
            raise ConfigError(f"Cannot read '{self._name}'.") from e
        return config

    def __validate(
        self, config: configparser.ConfigParser
    ) -> dict[str, dict[str, Any]]:
        """
        Check that the configuration holds exactly the schema sections
        and keys, and convert every value.
        """
        diff = _difference(self._rules.keys(), config.sections())
        if diff:
            raise ConfigError(f"'{self._name}' sections differ from schema: {diff}.")

        data: dict[str, dict[str, Any]] = {}
        for section, rules in self._rules.items():
            diff = _difference(rules.keys(), config[section].keys())
            if diff:
                raise ConfigError(
                    f"'{self._name}' section [{section}] differs from schema: {diff}."
                )
            data[section] = {
                key: rule.convert(config[section][key]) for key, rule in rules.items()
            }
        return data

    def generate_default(self, stream: TextIO):
        """
        Write the default configuration inferred from the schema, with
        the rule comments above their key.
        """
        lines = []
        for section, rules in self._rules.items():
            if lines:
                lines.append("")
            lines.append(f"[{section}]")
            for key, rule in rules.items():
                if rule.comment:
                    lines.append(f"; {rule.comment}")
                lines.append(f"{key} = {_to_literal(rule.default)}".rstrip())
        stream.write("\n".join(lines) + "\n")

    def section(self, name: str) -> MappingProxyType[str, Any]:
        """
        Raises:
            ConfigError: Unknown section.
        """
        if name not in self._data:
            raise ConfigError(f"Section [{name}] doesn't exist in '{self._name}'.")
        return MappingProxyType(self._data[name])

    def get_view(self) -> ConfigView:
        """
        Returns:
            ConfigView: A read-only view on the configuration values.
        """
        return MappingProxyType(
            {
                section: MappingProxyType(values)
                for section, values in self._data.items()
            }
        )


def _difference(expected, actual) -> str:
    expected, actual = set(expected), set(actual)
    missing = [f"-{e}" for e in sorted(expected - actual)]
    extra = [f"+{e}" for e in sorted(actual - expected)]
    return ", ".join(missing + extra)
