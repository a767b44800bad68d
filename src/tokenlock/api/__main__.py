# src/tokenlock/api/__main__.py
from __future__ import annotations

import uvicorn

from tokenlock.env import load_dotenv_if_present


def main() -> None:
    # Load .env early so TOKENLOCK_* vars exist before anything reads them.
    load_dotenv_if_present()

    # Import after dotenv load (config is read at app creation).
    from tokenlock.api.app import create_app
    from tokenlock.runtime.ledger_config import load_ledger_config

    cfg = load_ledger_config()
    uvicorn.run(create_app(ledger_config=cfg), host=cfg.api_host, port=cfg.api_port, log_level=cfg.log_level.lower())


if __name__ == "__main__":
    main()
