"""Run the roster backend under uvicorn until interrupted."""
import signal
import sys

import uvicorn

from roster.core.config import settings


def _exit_on_signal(sig, frame):
    print(f"\nReceived signal {sig}, stopping the roster bot...")
    sys.exit(0)


def main():
    signal.signal(signal.SIGINT, _exit_on_signal)
    signal.signal(signal.SIGTERM, _exit_on_signal)

    print(f"Duty Roster Bot on http://{settings.HOST}:{settings.PORT} ({settings.ENVIRONMENT})")
    uvicorn.run(
        "roster.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
