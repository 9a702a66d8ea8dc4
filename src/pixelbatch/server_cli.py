"""``pixelbatch-server``: run the API with uvicorn.

Options are translated into ``PIXELBATCH_*`` environment variables before
the app module is imported, so they take precedence over ``.env``.
"""

import argparse
import os


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pixelbatch-server",
        description="pixelbatch API server: batch image generation scheduler",
    )
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8080)
    parser.add_argument(
        "--local",
        action="store_true",
        help="SQLite database and in-process callbacks; no Postgres or Redis needed",
    )
    parser.add_argument(
        "--callback-backend",
        choices=["redis", "memory"],
        help="Delayed-callback substrate (ignored with --local, which always uses memory)",
    )
    parser.add_argument("--log-level", choices=["debug", "info", "warning", "error"])
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    if args.local:
        os.environ["PIXELBATCH_LOCAL_MODE"] = "1"
    if args.callback_backend:
        os.environ["PIXELBATCH_CALLBACK_BACKEND"] = args.callback_backend
    if args.log_level:
        os.environ["PIXELBATCH_LOG_LEVEL"] = args.log_level

    import uvicorn

    uvicorn.run("pixelbatch.main:app", host=args.host, port=args.port, log_level=args.log_level or "info")


if __name__ == "__main__":
    main()
