"""Run every automated notification category once and print the outcome as JSON.

Meant for cron, e.g. ``0 9 * * * python run_notifications.py``.
"""

import sys

from prepx.app.core.logging import configure_logging
from prepx.app.db.base import Base
from prepx.app.db.session import engine
from prepx.app.services.notification_engine import run_all_notifications


def main() -> int:
    configure_logging()
    Base.metadata.create_all(bind=engine)
    result = run_all_notifications()
    print(result.model_dump_json(indent=2))
    return 1 if result.total_failed else 0


if __name__ == "__main__":
    sys.exit(main())
