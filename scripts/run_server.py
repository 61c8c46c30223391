"""Run the scoreboard service with uvicorn.

Usage:
    python scripts/run_server.py --reload
"""
import argparse

import uvicorn

from scorehub.config import get_settings


def main(argv=None):
    settings = get_settings()
    p = argparse.ArgumentParser()
    p.add_argument("--host", default=settings.host)
    p.add_argument("--port", type=int, default=settings.port)
    p.add_argument("--reload", action="store_true")
    args = p.parse_args(argv)

    uvicorn.run("scorehub.fastapi_app:app", host=args.host, port=args.port, reload=args.reload)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
