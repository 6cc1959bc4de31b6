"""Run the backend with uvicorn: python -m notelearn.api [--host HOST] [--port PORT]"""
import argparse
import logging

import uvicorn

from notelearn.config import Settings


def main() -> None:
    parser = argparse.ArgumentParser(description="Note Learn backend")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--reload", action="store_true")
    args = parser.parse_args()

    settings = Settings.from_env()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    uvicorn.run("notelearn.api.main:app", host=args.host, port=args.port, reload=args.reload)


if __name__ == "__main__":
    main()
