"""Run the concierge API with uvicorn: ``python -m concierge``."""

import uvicorn

from concierge.config import settings


if __name__ == "__main__":
    uvicorn.run(
        "concierge.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
    )
