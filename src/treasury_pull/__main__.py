"""
Run the treasury pull server.

    python -m treasury_pull
    treasury-pull --env-file .env.server
"""

import argparse
import logging

import uvicorn

from .servers.apps import create_app
from .servers.config import TreasuryConfig


def main() -> None:
    parser = argparse.ArgumentParser(description="Signature-based delegated transfer server")
    parser.add_argument("--env-file", default=".env", help="dotenv file to load (default: .env)")
    args = parser.parse_args()

    config = TreasuryConfig.from_env(args.env_file)
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = create_app(config)
    uvicorn.run(app, host=config.host, port=config.port, log_level=config.log_level.lower())


if __name__ == "__main__":
    main()
