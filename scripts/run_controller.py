#!/usr/bin/env python3
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

print(
    f"[lotl] cdp={os.environ.get('LOTL_CDP_HOST', '127.0.0.1')}:"
    f"{os.environ.get('LOTL_CDP_PORT') or os.environ.get('CHROME_PORT') or '9222'} | "
    f"mode={os.environ.get('LOTL_SESSION_MODE', 'persistent')} | "
    f"platforms={os.environ.get('LOTL_PLATFORMS', 'aistudio')}",
    file=sys.stderr,
)

from lotl.controller.main import main  # noqa: E402

if __name__ == "__main__":
    main()
