"""
Seed configuration loading.

Loads the ordered list of records to seed from a YAML or JSON file and
validates it into a SeedConfig.
"""

import json
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from seeder.core.errors import ConfigError
from seeder.core.models import SeedConfig
from seeder.utils.validation import ValidationError, validate_file_path


class SeedConfigLoader:
    """
    Loads seed configurations from YAML or JSON files.

    Expected YAML format:
    ```yaml
    region: CA
    orders:
      - customer:
          name: Jane Doe
          email: jane@example.com
        line_items:
          - sku: SKU-001
            quantity: 2
    grouping:
      carrier: canada_post
      location_id: LOC-1
      region: CA
      prep_date: "2025-01-15"
      test_tag: smoke
    ```

    ``original_index`` may be omitted; it defaults to the order's position.
    """

    SUPPORTED_SUFFIXES = (".yaml", ".yml", ".json")

    def __init__(self, config_path: str | Path):
        """
        Initialize the seed config loader.

        Args:
            config_path: Path to the configuration file

        Raises:
            ConfigError: If the file does not exist or has an unsupported suffix
        """
        try:
            config_path = validate_file_path(str(config_path), field_name="config_path")
        except ValidationError as e:
            raise ConfigError(str(e)) from e

        self.config_path = Path(config_path)
        if not self.config_path.exists():
            raise ConfigError(f"Seed configuration file not found: {config_path}")
        if self.config_path.suffix.lower() not in self.SUPPORTED_SUFFIXES:
            raise ConfigError(
                f"Unsupported file format. Expected .yaml, .yml or .json file. Got: {config_path}"
            )

    def load(self) -> SeedConfig:
        """
        Load and validate the configuration.

        Returns:
            Validated SeedConfig

        Raises:
            ConfigError: If the file cannot be parsed or fails validation
        """
        raw = self._read()
        return parse_seed_config(raw, source=str(self.config_path))

    def _read(self) -> Any:
        try:
            with open(self.config_path, encoding="utf-8") as f:
                if self.config_path.suffix.lower() == ".json":
                    return json.load(f)
                return yaml.safe_load(f)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise ConfigError(f"Could not parse {self.config_path}: {e}") from e
        except OSError as e:
            raise ConfigError(f"Could not read {self.config_path}: {e}") from e


def parse_seed_config(raw: Any, source: str = "<config>") -> SeedConfig:
    """
    Validate raw configuration data.

    Raises:
        ConfigError: With one "path: message" line per validation error
    """
    if not isinstance(raw, dict):
        raise ConfigError(f"{source}: configuration must be a mapping with an 'orders' section")
    try:
        return SeedConfig.model_validate(raw)
    except PydanticValidationError as e:
        errors = "\n".join(
            f"{'.'.join(str(part) for part in err['loc']) or '<root>'}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigError(f"Input file validation failed ({source}):\n{errors}") from e


class SeedConfigBuilder:
    """
    Programmatically build seed configurations (for testing or generated batches).
    """

    def __init__(self, region: str = "CA"):
        """Initialize an empty configuration."""
        self.region = region
        self.orders: list[dict[str, Any]] = []
        self.grouping: dict[str, Any] | None = None

    def add_order(
        self,
        email: str,
        skus: list[str] | dict[str, int],
        name: str | None = None,
    ) -> "SeedConfigBuilder":
        """Add an order; a list of SKUs means quantity 1 each."""
        quantities = skus if isinstance(skus, dict) else {sku: 1 for sku in skus}
        self.orders.append({
            "customer": {"name": name or email.split("@")[0], "email": email},
            "line_items": [{"sku": sku, "quantity": qty} for sku, qty in quantities.items()],
        })
        return self

    def with_grouping(
        self,
        carrier: str,
        location_id: str,
        prep_date: str,
        test_tag: str | None = None,
    ) -> "SeedConfigBuilder":
        """Request a grouping record for the batch."""
        self.grouping = {
            "carrier": carrier,
            "location_id": location_id,
            "region": self.region,
            "prep_date": prep_date,
            "test_tag": test_tag,
        }
        return self

    def build(self) -> SeedConfig:
        """Build and validate the configuration."""
        raw: dict[str, Any] = {"region": self.region, "orders": self.orders}
        if self.grouping is not None:
            raw["grouping"] = self.grouping
        return parse_seed_config(raw, source="builder")
