import argparse
import logging

from app import create_app


def main() -> None:
    p = argparse.ArgumentParser(prog="linkshelf", description="Serve the Linkshelf API.")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=8072)
    p.add_argument(
        "--access-log", action="store_true", help="log every request to stderr"
    )
    args = p.parse_args()

    logging.getLogger("werkzeug").disabled = not args.access_log
    app = create_app()
    app.logger.info("Linkshelf API on http://%s:%s/api/v1", args.host, args.port)
    app.run(host=args.host, port=args.port, debug=False)


if __name__ == "__main__":
    main()
