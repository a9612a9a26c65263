"""Voice relay server package.

Importing the package reads API credentials and server settings from
``server/.env``; a ``server/.env.local`` file, when present, wins over it.
"""
from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv


_SERVER_DIR = Path(__file__).resolve().parent.parent

load_dotenv(_SERVER_DIR / ".env")
load_dotenv(_SERVER_DIR / ".env.local", override=True)
