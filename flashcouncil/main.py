import argparse
import logging
import sys


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="flashcouncil", description="Multi-persona flashcard drafting service",
    )
    parser.add_argument("--host", default="127.0.0.1", help="Host (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=8431, help="Port (default: 8431)")
    parser.add_argument("--db", default=None, help="Settings database path (default: ~/.flashcouncil/flashcouncil.db)")
    parser.add_argument("--model", default=None, help="Override the completion model")
    parser.add_argument("--base-url", default=None, help="Override the OpenAI-compatible base URL")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug output")
    return parser


def main():
    args = build_parser().parse_args()
    log = logging.getLogger("flashcouncil")
    log.setLevel(logging.DEBUG)
    fmt = logging.Formatter("%(asctime)s %(levelname)s %(message)s")
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(logging.DEBUG if args.verbose else logging.INFO)
    handler.setFormatter(fmt)
    log.addHandler(handler)

    from pathlib import Path

    import uvicorn
    from .server.app import create_app
    from .server.settings import SettingsStore

    settings = SettingsStore(Path(args.db).expanduser() if args.db else None)
    overrides = {"llm.model": args.model, "llm.base_url": args.base_url}
    app = create_app(settings_store=settings, overrides=overrides)
    print(f"  Local:   http://localhost:{args.port}")
    print()
    log.info(
        "starting flashcouncil: db=%s model=%s",
        settings.db_path,
        args.model or settings.get("llm.model"),
    )
    try:
        uvicorn.run(app, host=args.host, port=args.port, log_level="warning", log_config=None)
    finally:
        settings.close()


if __name__ == "__main__":
    main()
