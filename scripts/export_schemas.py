#!/usr/bin/env python3
"""
Write the JSON schema of every record model to a directory.

Usage:
  PYTHONPATH=. python3 scripts/export_schemas.py [target_dir]
"""

import sys
from pathlib import Path

from libs.core.schemas import SCHEMA_TARGETS, export_schemas


def main(argv: list[str]) -> int:
    target = Path(argv[1]) if len(argv) > 1 else Path("schemas")
    export_schemas(target)
    print(f"Wrote {len(SCHEMA_TARGETS)} schemas to {target}")
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv))
