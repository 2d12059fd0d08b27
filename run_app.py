from __future__ import annotations

import sys
from pathlib import Path

# Allow running without installing the package
HERE = Path(__file__).resolve().parent
SRC = HERE / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from capacityplan.app import main  # noqa: E402


if __name__ == "__main__":
    sys.exit(main())
