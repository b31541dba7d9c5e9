"""Project registry loader with schema validation."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from pydantic import ValidationError

from .exceptions import PolicyValidationError, RegistryError
from .models import AugmenterSettings, SecurityPolicy
from .policy import DEFAULT_VARIANT, POLICY_VARIANTS, get_policy_variant

REGISTRY_DIRNAME = ".bundleguard"

POLICY_SCHEMA: dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "BundleGuard Security Policy",
    "type": "object",
    "properties": {
        "variant": {"type": "string", "enum": sorted(POLICY_VARIANTS)},
        "directives": {
            "type": "object",
            "minProperties": 1,
            "additionalProperties": {
                "oneOf": [
                    {"type": "string", "minLength": 1},
                    {
                        "type": "array",
                        "minItems": 1,
                        "items": {"type": "string", "minLength": 1},
                    },
                ],
            },
        },
    },
    "oneOf": [
        {"required": ["variant"], "not": {"required": ["directives"]}},
        {"required": ["directives"], "not": {"required": ["variant"]}},
    ],
}

SETTINGS_SCHEMA: dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "BundleGuard Build Settings",
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "paths": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "root": {"type": "string"},
                "app_html": {"type": "string"},
                "app_src": {"type": "string"},
            },
        },
        "purge_enabled": {"type": "boolean"},
        "content_globs": {"type": "array", "items": {"type": "string"}},
        "safelist": {"type": "array", "items": {"type": "string"}},
        "hash_algorithm": {"enum": ["sha256", "sha384", "sha512"]},
        "environment_variable": {"type": "string", "minLength": 1},
    },
}

SCHEMAS: dict[str, dict[str, Any]] = {
    "policy": POLICY_SCHEMA,
    "settings": SETTINGS_SCHEMA,
}


class DuplicateKeyError(yaml.constructor.ConstructorError):
    """Raised by the YAML loader when a mapping repeats a key."""


class UniqueKeyLoader(yaml.SafeLoader):
    """Safe YAML loader that rejects repeated mapping keys."""

    def construct_mapping(self, node: yaml.MappingNode, deep: bool = False) -> dict[Any, Any]:
        self.flatten_mapping(node)
        mapping: dict[Any, Any] = {}
        for key_node, value_node in node.value:
            key = self.construct_object(key_node, deep=deep)
            if key in mapping:
                raise DuplicateKeyError(
                    "while constructing a mapping",
                    node.start_mark,
                    f"found duplicate key {key!r}",
                    key_node.start_mark,
                )
            mapping[key] = self.construct_object(value_node, deep=deep)
        return mapping


class PolicyRegistry:
    """Loads and validates a project's policy and build settings."""

    def __init__(self, registry_root: Path) -> None:
        """Initialize registry with root path.

        Args:
            registry_root: Path to the project's .bundleguard directory
        """
        self.root = Path(registry_root)
        self._schema_cache: dict[str, dict[str, Any]] = {}

    @property
    def project_root(self) -> Path:
        """Project directory the registry belongs to."""
        return self.root.parent

    def _load_schema(self, schema_name: str) -> dict[str, Any]:
        """Load and cache JSON schema."""
        if schema_name not in self._schema_cache:
            schema_path = self.root / "schemas" / f"{schema_name}.schema.json"
            if not schema_path.exists():
                msg = f"Schema file not found: {schema_path}"
                raise RegistryError(msg)

            try:
                with schema_path.open(encoding="utf-8") as f:
                    self._schema_cache[schema_name] = json.load(f)
            except (json.JSONDecodeError, OSError) as e:
                msg = f"Failed to load schema {schema_name}: {e}"
                raise RegistryError(msg) from e

        return self._schema_cache[schema_name]

    def _validate_yaml_against_schema(
        self,
        data: dict[str, Any],
        schema_name: str,
    ) -> None:
        """Validate YAML data against JSON schema."""
        schema = self._load_schema(schema_name)

        try:
            jsonschema.validate(data, schema)
        except jsonschema.ValidationError as e:
            msg = f"Schema validation failed: {e.message}"
            raise PolicyValidationError(
                msg,
                details={"path": list(e.absolute_path), "schema": schema_name},
            ) from e

    def _load_yaml(self, filename: str) -> dict[str, Any]:
        """Read a registry YAML document, rejecting duplicate keys."""
        path = self.root / filename
        if not path.exists():
            msg = f"Registry file not found: {path}"
            raise RegistryError(msg)

        try:
            with path.open(encoding="utf-8") as f:
                data = yaml.load(f, Loader=UniqueKeyLoader)
        except DuplicateKeyError as e:
            msg = f"Duplicate key in {filename}: {e.problem}"
            raise PolicyValidationError(msg, details={"file": filename}) from e
        except yaml.YAMLError as e:
            msg = f"Failed to parse {filename}: {e}"
            raise RegistryError(msg) from e
        except OSError as e:
            msg = f"Failed to read {filename}: {e}"
            raise RegistryError(msg) from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            msg = f"{filename} must contain a mapping"
            raise PolicyValidationError(msg, details={"file": filename})
        return data

    def load_policy(self, validate: bool = True) -> SecurityPolicy:
        """Load and validate the project's security policy.

        Args:
            validate: Whether to perform schema validation

        Returns:
            The named built-in variant or the policy built from ``directives``

        Raises:
            RegistryError: If policy.yaml cannot be loaded
            PolicyValidationError: If validation fails
        """
        data = self._load_yaml("policy.yaml")

        if validate:
            self._validate_yaml_against_schema(data, "policy")

        if "variant" in data:
            return get_policy_variant(data["variant"])

        try:
            return SecurityPolicy.model_validate({"directives": data.get("directives")})
        except ValidationError as e:
            msg = f"Policy validation failed: {e}"
            raise PolicyValidationError(msg) from e

    def load_settings(self, validate: bool = True) -> AugmenterSettings:
        """Load build settings merged with the project's policy.

        A missing settings.yaml yields defaults, and a missing policy.yaml
        leaves the built-in default policy in place. Relative paths resolve
        against the project root.

        Raises:
            RegistryError: If a present file cannot be loaded
            PolicyValidationError: If validation fails
        """
        data: dict[str, Any] = {}
        if (self.root / "settings.yaml").exists():
            data = self._load_yaml("settings.yaml")
            if validate:
                self._validate_yaml_against_schema(data, "settings")

        try:
            settings = AugmenterSettings.model_validate(data)
        except ValidationError as e:
            msg = f"Settings validation failed: {e}"
            raise PolicyValidationError(msg) from e

        root = settings.paths.root
        if not root.is_absolute():
            root = self.project_root / root
        update: dict[str, Any] = {
            "paths": settings.paths.model_copy(update={"root": root}),
        }
        if (self.root / "policy.yaml").exists():
            update["policy"] = self.load_policy(validate=validate)
        return settings.model_copy(update=update)

    def write_defaults(self, variant: str = DEFAULT_VARIANT) -> list[Path]:
        """Write starter policy, settings and schema files.

        Returns:
            Paths of the files written
        """
        get_policy_variant(variant)
        schemas_dir = self.root / "schemas"
        schemas_dir.mkdir(parents=True, exist_ok=True)

        written: list[Path] = []
        for name, schema in SCHEMAS.items():
            path = schemas_dir / f"{name}.schema.json"
            path.write_text(json.dumps(schema, indent=2) + "\n", encoding="utf-8")
            written.append(path)

        policy_path = self.root / "policy.yaml"
        policy_path.write_text(STARTER_POLICY.format(variant=variant), encoding="utf-8")
        written.append(policy_path)

        settings_path = self.root / "settings.yaml"
        settings_path.write_text(STARTER_SETTINGS, encoding="utf-8")
        written.append(settings_path)
        return written


def discover_registry(start: Path | None = None) -> Path | None:
    """Discover a registry in the directory hierarchy.

    Returns:
        Path to discovered registry or None if not found
    """
    current = (start or Path.cwd()).resolve()

    while True:
        registry_path = current / REGISTRY_DIRNAME
        if registry_path.is_dir():
            return registry_path
        if current == current.parent:
            return None
        current = current.parent


STARTER_POLICY = """\
# BundleGuard Security Policy
# ===========================
# Either name a built-in variant:
#   strict-dynamic       script-src 'strict-dynamic', trusted types required
#   self-strict-dynamic  script-src 'self' 'strict-dynamic', trusted types required
#   self                 script-src 'self'
# or replace `variant` with an explicit `directives` mapping, e.g.
#
# directives:
#   default-src: "'none'"
#   script-src: ["'self'"]
#
# Keywords must be quoted ('self', 'none'); unknown or repeated directives
# are rejected before the build starts.

variant: {variant}
"""

STARTER_SETTINGS = """\
# BundleGuard Build Settings
paths:
  app_html: public/index.html
  app_src: src
purge_enabled: true
content_globs:
  - "**/*"
safelist: []
hash_algorithm: sha384
environment_variable: NODE_ENV
"""
