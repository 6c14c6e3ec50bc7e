"""Run script with proper environment loading"""
import sys
from pathlib import Path

from dotenv import load_dotenv

BACKEND_DIR = Path(__file__).resolve().parent
BASE_DIR = BACKEND_DIR.parent

# Allow running from a checkout without installing the package
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

load_dotenv(BASE_DIR / ".env")


if __name__ == "__main__":
    import uvicorn

    from explore.core.config import get_settings

    settings = get_settings()

    uvicorn.run(
        "explore.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
        log_config=None,  # LoggingConfig owns the handlers
    )
