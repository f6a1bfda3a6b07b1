"""Run the settlement API under uvicorn."""

import uvicorn

from settlement_engine.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "settlement_engine.api.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
