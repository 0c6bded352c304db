"""
Connector configuration loader.

Reads the connectors document, validates it against the bundled JSON schema
and converts it into typed config objects. Schema problems are reported as
warnings so the runtime can still boot whatever sections are usable.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from jsonschema import Draft7Validator

from shared.config.connectors import ConnectorsConfig, load_connectors_config
from shared.logging.logger import get_logger

log = get_logger("core.config_loader")


class ConfigLoader:
    """
    Loads and validates the connectors configuration.

    Files:
      - shared/config/connectors.json (override with RELAY_CONNECTORS_CONFIG)

    Validation:
      - schemas/connectors.schema.json, Draft 7; failures are logged, never
        raised.
    """

    CONNECTORS_PATH = Path("shared/config/connectors.json")
    SCHEMA_DIR = Path("schemas")

    def __init__(
        self,
        path: Optional[Path] = None,
        schema_dir: Optional[Path] = None,
    ) -> None:
        env_path = os.getenv("RELAY_CONNECTORS_CONFIG")
        self.path = Path(path or env_path or self.CONNECTORS_PATH)
        self._schema_path = Path(schema_dir or self.SCHEMA_DIR) / "connectors.schema.json"

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load_json(self, path: Path, name: str) -> Dict[str, Any]:
        if not path.exists():
            log.warning(f"{name} config not found at {path}; using defaults")
            return {}

        try:
            with path.open("r", encoding="utf-8") as f:
                data = json.load(f)
                if isinstance(data, dict):
                    return data
                log.warning(f"{name} config root is not an object; ignoring")
        except (OSError, ValueError) as e:
            log.warning(f"Failed to load {name} config ({e}); using defaults")

        return {}

    def validate(self, payload: Dict[str, Any]) -> List[str]:
        """Return human-readable schema violations (empty when valid)."""
        if not self._schema_path.exists():
            log.debug(f"Schema not found at {self._schema_path}; skipping")
            return []

        try:
            schema = json.loads(self._schema_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            log.warning(f"Failed to load connectors schema ({e}); skipping validation")
            return []

        validator = Draft7Validator(schema)
        errors = sorted(validator.iter_errors(payload), key=lambda e: list(e.path))

        problems = []
        for err in errors:
            loc = "/".join(str(p) for p in err.path)
            problems.append(f"'{loc}': {err.message}")
        return problems

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def load_raw(self) -> Dict[str, Any]:
        payload = self._load_json(self.path, "connectors")
        for problem in self.validate(payload):
            log.warning(f"connectors config validation warning at {problem}")
        return payload

    def load(self) -> ConnectorsConfig:
        config = load_connectors_config(self.load_raw())
        log.info(
            f"Connectors loaded (youtube accounts="
            f"{len(config.youtube.accounts) if config.youtube else 0}, "
            f"vk={'on' if config.vk else 'off'})"
        )
        return config


__all__ = ["ConfigLoader"]
