from __future__ import annotations

import sys

from app.workers.payout_worker import main


if __name__ == "__main__":
    sys.exit(main())
