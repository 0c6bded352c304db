"""
======================================================================
 StreamRelay Connectors - Version v0.3.0-alpha (Build 2026.10)
======================================================================
"""

from __future__ import annotations

"""
Configuration validation script.

Validates the connectors JSON document against schemas/connectors.schema.json
and checks that every referenced environment variable is set.

Design rules:
- No side effects on import
- No connector startup
- Validation only (no mutation)
"""

import argparse
import sys
from pathlib import Path
from typing import Any, Dict, List

from dotenv import load_dotenv

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from core.config_loader import ConfigLoader  # noqa: E402
from shared.config.connectors import load_connectors_config  # noqa: E402


# ------------------------------------------------------------
# Paths
# ------------------------------------------------------------

CONFIG_PATH = ROOT / "shared" / "config" / "connectors.json"
SCHEMA_DIR = ROOT / "schemas"


# ------------------------------------------------------------
# Helpers
# ------------------------------------------------------------

def _error(msg: str):
    print(f"[CONFIG ERROR] {msg}", file=sys.stderr)


# ------------------------------------------------------------
# Validators
# ------------------------------------------------------------

def validate_connectors_config(path: Path) -> bool:
    """
    Validate the connectors document.

    A missing file is an error here (the runtime tolerates it, this
    script does not). Schema violations and unresolved env references
    are reported individually.
    """

    if not path.exists():
        _error(f"{path}: file not found")
        return False

    loader = ConfigLoader(path=path, schema_dir=SCHEMA_DIR)
    payload: Dict[str, Any] = loader._load_json(path, "connectors")
    if not payload:
        _error(f"{path.name}: empty or invalid JSON object")
        return False

    problems: List[str] = loader.validate(payload)
    for problem in problems:
        _error(f"{path.name}: {problem}")

    try:
        load_connectors_config(payload)
    except RuntimeError as e:
        _error(f"{path.name}: {e}")
        return False

    return not problems


# ------------------------------------------------------------
# Entry point
# ------------------------------------------------------------

def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Validate connectors config")
    parser.add_argument("path", nargs="?", default=str(CONFIG_PATH))
    args = parser.parse_args(argv)

    load_dotenv()

    if not validate_connectors_config(Path(args.path)):
        print("Configuration validation failed.", file=sys.stderr)
        return 1

    print("Configuration validation passed.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
