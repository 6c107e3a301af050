"""Run the radar feed and its status API with ``python -m livetraffic``."""

import uvicorn

from livetraffic.config import settings


def main() -> None:
    uvicorn.run(
        "livetraffic.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
