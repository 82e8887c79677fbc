from __future__ import annotations

import uvicorn

from tradelog.utils.config import get_settings
from tradelog.utils.logger import setup_logging


def main() -> None:
    settings = get_settings()
    setup_logging(settings, service="tradelog-price-api")

    uvicorn.run(
        "tradelog.api.webapp:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
