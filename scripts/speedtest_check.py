#!/usr/bin/env python3
"""
Standalone speed test runner for debugging the speedtest binary and library.
Uses SpeedTester from src/netquality/speedtester.py.
"""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = PROJECT_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from netquality.speedtester import SpeedTester  # type: ignore


def main() -> None:
    parser = argparse.ArgumentParser(description="Debug speed tests.")
    parser.add_argument("--timeout", type=float, default=90, help="Timeout in seconds (default: 90)")
    parser.add_argument("--cli-path", type=Path, help="Path to the Ookla speedtest binary (tried before speedtest-cli)")
    parser.add_argument("--download-only", action="store_true", help="Skip the upload test")
    args = parser.parse_args()

    tester = SpeedTester(timeout=args.timeout, cli_path=args.cli_path)
    result = asyncio.run(tester.measure(download_only=args.download_only))

    print("Tool:", result.tool or "not found")
    print("Success:", result.success)
    print("Download Mbps:", result.download_mbps)
    print("Upload Mbps:", result.upload_mbps)
    print("Elapsed ms:", result.elapsed_ms)
    print("Error:", result.error)

    if result.success and result.tool:
        print("\nParsed result JSON:")
        print(
            json.dumps(
                {
                    "download_mbps": result.download_mbps,
                    "upload_mbps": result.upload_mbps,
                    "elapsed_ms": result.elapsed_ms,
                },
                indent=2,
            )
        )


if __name__ == "__main__":
    main()
