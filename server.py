import argparse

import uvicorn
from dotenv import load_dotenv

from app.config import get_env_file, load_settings
from app.logger.logger import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the virtual staging API")
    parser.add_argument(
        "--env",
        choices=["dev", "docker", "prod", "local", "rc"],
        default="local",
        help="Environment file to load, .<env>.env (default: local, .env)",
    )
    parser.add_argument("--host", default=None, help="Override HOST from settings")
    parser.add_argument("--port", type=int, default=None, help="Override PORT from settings")
    return parser.parse_args()


def main() -> None:
    args = parse_args()

    env_file = get_env_file()
    if env_file:
        load_dotenv(env_file, override=True)
        logger.info(f"Loaded environment from {env_file}")
    else:
        logger.info("No environment file found, using process environment")

    settings = load_settings()
    host = args.host or settings.HOST
    port = args.port or settings.PORT

    logger.info(f"Starting {settings.APP_NAME} ({settings.APP_ENV}) on {host}:{port}")
    uvicorn.run(
        "app.app:get_app",
        factory=True,
        host=host,
        port=port,
        reload=settings.RELOAD,
        workers=None if settings.RELOAD else settings.WORKERS_COUNT,
    )


if __name__ == "__main__":
    main()
