import argparse
import os

from dotenv import load_dotenv

# container deployments set APP_ENV and provide variables directly
app_env = os.environ.get("APP_ENV")

if not app_env:
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "--env",
        type=str,
        choices=["dev", "docker", "prod", "local", "rc"],
        default="local",
        help="Specify the environment to use (dev, prod, local, docker default=local).",
    )

    try:
        # parse only known args, gunicorn owns the rest
        args, _ = parser.parse_known_args()
        env_file = f".{args.env}.env"
        if os.path.exists(env_file):
            load_dotenv(env_file, override=True)
        elif os.path.exists(".env"):
            load_dotenv(".env", override=True)
    except SystemExit:
        if os.path.exists(".env"):
            load_dotenv(".env", override=True)

# run with: gunicorn -c gunicorn_conf.py "app.app:get_app()"
workers = int(os.getenv("WORKERS_COUNT", 2))
threads = int(os.getenv("WORKERS_PER_CORE", 2))

PORT = os.getenv("PORT", 8900)

bind = f"0.0.0.0:{PORT}"
worker_class = "uvicorn.workers.UvicornWorker"

# synchronous providers can hold a request for the whole generation
timeout = 240
keepalive = 5

accesslog = "-"
errorlog = "-"
loglevel = "info"

preload_app = False
