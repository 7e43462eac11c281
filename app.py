"""Application entry point for the salon ledger API."""

import logging
import os

from salonbook.webapp import create_app

logging.basicConfig(
    level=os.environ.get("SALONBOOK_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = create_app()


if __name__ == "__main__":
    app.run(debug=True)
