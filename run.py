import sys
import logging
import argparse

from smartmark.config import Config


def serve(args) -> None:
    from smartmark import create_app

    log = logging.getLogger("werkzeug")
    log.disabled = True
    cli = sys.modules.get("flask.cli")
    if cli is not None:
        cli.show_server_banner = lambda *x: None

    app = create_app()
    print(f"SmartMark starting on http://{args.host}:{args.port}", flush=True)
    app.run(host=args.host, port=args.port, debug=False, threaded=True)


def watch(args) -> int:
    from smartmark.watch import run_watch

    return run_watch(base_url=args.url, token=args.token)


def main() -> None:
    p = argparse.ArgumentParser(prog="smartmark")
    p.add_argument("--log-level", default="WARNING")
    p.set_defaults(host="0.0.0.0", port=8072)
    sub = p.add_subparsers(dest="command")

    serve_p = sub.add_parser("serve", help="run the API server")
    serve_p.add_argument("--host", default="0.0.0.0")
    serve_p.add_argument("--port", type=int, default=8072)

    watch_p = sub.add_parser("watch", help="live bookmark list in the terminal")
    watch_p.add_argument("--url", default=Config.SMARTMARK_API_URL)
    watch_p.add_argument("--token", default=Config.SMARTMARK_API_TOKEN)

    args = p.parse_args()
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    if args.command == "watch":
        sys.exit(watch(args))
    serve(args)


if __name__ == "__main__":
    main()
