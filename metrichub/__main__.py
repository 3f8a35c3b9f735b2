from __future__ import annotations

import uvicorn

from metrichub.config import settings


def main() -> None:
    """Serve the API on ``HOST``:``PORT``."""
    uvicorn.run(
        "metrichub.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
