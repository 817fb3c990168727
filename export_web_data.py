#!/usr/bin/env python3
"""Export netquality history to JSON, optionally with a PNG plot.

Usage:
    python export_web_data.py [--db data/netquality.db] [--output path/to/history.json] [--plot path/to/history.png]
"""

import argparse
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent
SRC_ROOT = PROJECT_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from netquality.history import export_history, load_history, plot_history


def main():
    parser = argparse.ArgumentParser(description="Export netquality history to JSON")
    parser.add_argument(
        "--db",
        type=Path,
        default=Path("data/netquality.db"),
        help="SQLite database written by the monitor (default: data/netquality.db)",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=Path("data/history.json"),
        help="Output JSON file path (default: data/history.json)",
    )
    parser.add_argument("--plot", type=Path, help="Also render a PNG plot to this path")
    args = parser.parse_args()

    bundle = load_history(args.db)
    result = export_history(bundle, output_path=args.output)

    print(f"✓ Exported data to {args.output}")
    print(f"  - {len(bundle.connectivity)} connectivity checks")
    print(f"  - {len(bundle.speed)} speed tests")
    print(f"  - {len(result['outages'])} outages")

    if args.plot:
        plot_history(bundle, args.plot)
        print(f"✓ Plot written to {args.plot}")


if __name__ == "__main__":
    main()
