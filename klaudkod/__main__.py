"""CLI entry point for klaudkod."""

import argparse
import asyncio


def main():
    parser = argparse.ArgumentParser(description="klaudkod coding assistant server")
    parser.add_argument("--env-file", default=None, help="Path to a .env file")
    parser.add_argument("--host", default=None, help="Bind address (overrides SERVER_HOST)")
    parser.add_argument("--port", type=int, default=None, help="Listen port (overrides SERVER_PORT)")
    parser.add_argument("--working-dir", default=None, help="Tool confinement root (overrides WORKING_DIR)")
    parser.add_argument("--log-level", default=None, help="Log level (overrides LOG__LEVEL)")
    args = parser.parse_args()

    from klaudkod.app import create
    from klaudkod.config import load_config

    overrides = {}
    if args.host is not None:
        overrides["server_host"] = args.host
    if args.port is not None:
        overrides["server_port"] = args.port
    if args.working_dir is not None:
        overrides["working_dir"] = args.working_dir
    config = load_config(args.env_file, **overrides)
    if args.log_level:
        config.log.level = args.log_level.upper()

    app = create(config)
    try:
        asyncio.run(app.run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
