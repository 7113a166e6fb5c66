"""
Pipeline configuration.

Settings load from a YAML file and are then overridden by environment
variables, so a deployment can tune chunking and timeouts without editing
the file.

Expected YAML format:
```yaml
import:
  chunk_size: 5000
  batch_size: 50
  auto_reconcile: false
reconcile:
  timeout_seconds: 10
shipping_quote:
  cooldown_seconds: 300
header_synonyms:
  part_number: ["Stock Code"]
```
"""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

DEFAULT_CONFIG_PATH = "config/pipeline.yaml"

# env var -> settings field
ENV_OVERRIDES: dict[str, str] = {
    "IMPORT_CHUNK_SIZE": "chunk_size",
    "IMPORT_BATCH_SIZE": "batch_size",
    "IMPORT_AUTO_RECONCILE": "auto_reconcile",
    "RECONCILE_TIMEOUT_SECONDS": "reconcile_timeout_seconds",
    "SHIPPING_QUOTE_COOLDOWN_SECONDS": "shipping_quote_cooldown_seconds",
    "STAGING_PAGE_SIZE": "page_size",
}


class PipelineSettings(BaseModel):
    """
    Tunables for the import pipeline.

    Attributes:
        chunk_size: Rows per upload session
        batch_size: Rows between progress updates and control checks
        auto_reconcile: Reconcile accepted rows as each batch is staged
        reconcile_timeout_seconds: statement_timeout for one upsert
        shipping_quote_cooldown_seconds: Minimum spacing of shipping quotes
        page_size: Default staging page size
        max_page_size: Upper bound accepted for a staging page
        stalled_after_seconds: A processing session with no update for this
            long is reported as stalled
        header_synonyms: Extra header spellings per canonical field
    """

    chunk_size: int = Field(5000, ge=1)
    batch_size: int = Field(50, ge=1)
    auto_reconcile: bool = False
    reconcile_timeout_seconds: float = Field(10.0, gt=0)
    shipping_quote_cooldown_seconds: float = Field(300.0, ge=0)
    page_size: int = Field(50, ge=1)
    max_page_size: int = Field(1000, ge=1)
    stalled_after_seconds: float = Field(3600.0, gt=0)
    header_synonyms: dict[str, list[str]] = Field(default_factory=dict)

    @classmethod
    def load(cls, config_path: str | Path | None = None, environ: dict[str, str] | None = None) -> "PipelineSettings":
        """
        Load settings from YAML (when the file exists) and the environment.

        Args:
            config_path: YAML path; PIPELINE_CONFIG or config/pipeline.yaml when omitted
            environ: Environment mapping, os.environ when omitted

        Raises:
            ValueError: If the YAML is not a mapping
        """
        env = os.environ if environ is None else environ
        path = Path(config_path or env.get("PIPELINE_CONFIG", DEFAULT_CONFIG_PATH))

        values: dict[str, Any] = {}
        if path.exists():
            values.update(cls._read_yaml(path))

        for env_name, field_name in ENV_OVERRIDES.items():
            raw = env.get(env_name)
            if raw is not None and raw.strip() != "":
                values[field_name] = raw.strip()

        return cls(**values)

    @staticmethod
    def _read_yaml(path: Path) -> dict[str, Any]:
        with open(path) as f:
            config = yaml.safe_load(f) or {}

        if not isinstance(config, dict):
            raise ValueError(f"Configuration file {path} must contain a mapping")

        import_section = config.get("import", {}) or {}
        reconcile_section = config.get("reconcile", {}) or {}
        quote_section = config.get("shipping_quote", {}) or {}
        staging_section = config.get("staging", {}) or {}
        monitor_section = config.get("monitor", {}) or {}

        values: dict[str, Any] = {}
        for key in ("chunk_size", "batch_size", "auto_reconcile"):
            if key in import_section:
                values[key] = import_section[key]
        if "timeout_seconds" in reconcile_section:
            values["reconcile_timeout_seconds"] = reconcile_section["timeout_seconds"]
        if "cooldown_seconds" in quote_section:
            values["shipping_quote_cooldown_seconds"] = quote_section["cooldown_seconds"]
        for key in ("page_size", "max_page_size"):
            if key in staging_section:
                values[key] = staging_section[key]
        if "stalled_after_seconds" in monitor_section:
            values["stalled_after_seconds"] = monitor_section["stalled_after_seconds"]

        synonyms = config.get("header_synonyms") or {}
        if not isinstance(synonyms, dict):
            raise ValueError("header_synonyms must map canonical field names to lists of headers")
        values["header_synonyms"] = {
            str(field): [str(s) for s in (spellings if isinstance(spellings, list) else [spellings])]
            for field, spellings in synonyms.items()
        }
        return values
