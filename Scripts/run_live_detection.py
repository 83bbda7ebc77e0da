from __future__ import annotations

import sys

from Live_Detection.runner import main


if __name__ == "__main__":
    sys.exit(main())
