"""Operator CLI working directly on the data files.

Meant for setup and recovery while the server is stopped: a running server
keeps its own in-memory copy and will overwrite the files on its next
mutation.

Usage:
    python -m scorehub.admin_cli list
    python -m scorehub.admin_cli create "Court 1"
    python -m scorehub.admin_cli delete Ab3dE9xQ
    python -m scorehub.admin_cli current
"""
from __future__ import annotations

import argparse
import asyncio
import json
import os
from typing import Any, Dict, Optional

from scorehub.auth import is_authorized
from scorehub.config import get_settings
from scorehub.match_store import MatchStore
from scorehub.models import to_wire
from scorehub.scoreboard_store import ScoreboardStore


def _ensure_token(provided: Optional[str]) -> str:
    token = provided or os.getenv("API_KEY")
    if not token:
        raise ValueError("API key required: set API_KEY or pass --api-key")
    if not is_authorized(token):
        raise ValueError("Invalid API key")
    return token


async def _run(command: str, argument: Optional[str]) -> Dict[str, Any]:
    settings = get_settings()
    if command in ("list", "create", "delete"):
        scoreboards = ScoreboardStore(settings.scoreboards_path)
        await scoreboards.load()
        if command == "list":
            return {"ok": True, "scoreboards": [to_wire(s) for s in scoreboards.find_all()]}
        if not argument:
            raise ValueError(f"{command} requires an argument")
        if command == "create":
            return {"ok": True, "scoreboard": to_wire(await scoreboards.create(argument))}
        return {"ok": await scoreboards.delete(argument), "id": argument}

    matches = MatchStore(settings.matches_path)
    await matches.load()
    return {"ok": True, "match": to_wire(matches.get_current_match())}


def run_command(command: str, argument: Optional[str] = None, api_key: Optional[str] = None) -> Dict[str, Any]:
    """Programmatic entry point used by `main` and tests."""
    _ensure_token(api_key)
    return asyncio.run(_run(command, argument))


def main(argv: Optional[list[str]] = None) -> int:
    p = argparse.ArgumentParser(description="Manage scoreboards offline")
    p.add_argument("command", choices=["list", "create", "delete", "current"])
    p.add_argument("argument", nargs="?", help="scoreboard name (create) or id (delete)")
    p.add_argument("--api-key", required=False, help="API key (overrides API_KEY env var)")

    args = p.parse_args(argv)
    try:
        res = run_command(args.command, args.argument, args.api_key)
    except Exception as exc:
        print(json.dumps({"ok": False, "error": str(exc)}))
        return 2

    print(json.dumps(res))
    return 0 if res.get("ok") else 1


if __name__ == "__main__":
    raise SystemExit(main())  # pragma: no cover
