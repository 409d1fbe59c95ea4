"""Local path constants.

Operator-side state lives under ``.vps-deployer`` in the working directory:
- .vps-deployer/store.json   # system of record (JsonProjectStore)
"""

from pathlib import Path

BASE_DIR = Path(".vps-deployer")
STORE_FILE = BASE_DIR / "store.json"


def get_store_path() -> Path:
    BASE_DIR.mkdir(parents=True, exist_ok=True)
    return STORE_FILE
