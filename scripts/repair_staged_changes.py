#!/usr/bin/env python3
"""Repair pending staged-change files.

Usage:
    # Show what would change
    python scripts/repair_staged_changes.py

    # Rewrite files in place
    python scripts/repair_staged_changes.py --write --dir agent/changes
"""

import argparse
import logging
import sys
from collections import Counter
from pathlib import Path

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.changes.repair import repair_directory  # noqa: E402
from src.config import PipelineConfig  # noqa: E402


def main() -> int:
    parser = argparse.ArgumentParser(description="Canonicalize and salvage pending staged changes")
    parser.add_argument("--dir", help="Changes directory (default: AGENT_CHANGES_DIR)")
    parser.add_argument("--write", action="store_true", help="Persist repaired files")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    changes_dir = Path(args.dir or PipelineConfig.from_env().changes_dir)
    if not changes_dir.is_dir():
        print(f"Error: {changes_dir} is not a directory")
        return 1

    results = repair_directory(changes_dir, write=args.write)
    counts = Counter(r.status.value for r in results)
    summary = ", ".join(f"{count} {status}" for status, count in sorted(counts.items())) or "no files"
    print(f"Repair {'completed' if args.write else 'dry run'}: {summary}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
