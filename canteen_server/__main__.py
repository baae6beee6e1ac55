"""Run the API server: python -m canteen_server"""

import uvicorn

from .config.settings import settings


def main():
    uvicorn.run(
        "canteen_server.app:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
