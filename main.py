"""Taleweaver — dev launcher. Starts the API server in watch mode."""

import argparse
import os
import signal
import subprocess
import sys
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "0.0.0.0")
BACKEND_PORT = os.getenv("BACKEND_PORT", "13013")


def main():
    parser = argparse.ArgumentParser(description="Taleweaver dev launcher")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Save storage directory (default: ./data)")
    args = parser.parse_args()

    env = os.environ.copy()
    if args.data_dir:
        env["DATA_DIR"] = str(args.data_dir.resolve())

    if not env.get("TALEWEAVER_MODEL") or not env.get("TALEWEAVER_API_KEY"):
        print("Warning: TALEWEAVER_MODEL / TALEWEAVER_API_KEY not set, story endpoints will return 400")

    proc: subprocess.Popen | None = None

    def shutdown(*_):
        print("\nShutting down...")
        if proc is not None:
            proc.terminate()
            proc.wait()
        sys.exit(0)

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    print(f"Starting API on http://localhost:{BACKEND_PORT} ...")
    proc = subprocess.Popen(
        ["uv", "run", "uvicorn", "taleweaver.app:app", "--reload", "--host", HOST, "--port", BACKEND_PORT],
        cwd=ROOT, env=env,
    )
    proc.wait()


if __name__ == "__main__":
    main()
