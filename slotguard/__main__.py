"""Run the API server: ``python -m slotguard``."""

import uvicorn

from slotguard.core.config import get_settings
from slotguard.main import create_app


def main() -> None:
    settings = get_settings()
    uvicorn.run(create_app(settings=settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
