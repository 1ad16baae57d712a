#!/usr/bin/env python3
"""
Launch an interview host instance with command-line overrides.
"""

from __future__ import annotations

import argparse
import os
from pathlib import Path

import uvicorn


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run the avatar interview host service.",
    )
    parser.add_argument("--host", default=None, help="Bind host (default: HOST_BIND or 0.0.0.0).")
    parser.add_argument("--port", type=int, default=None, help="Bind port (default: HOST_PORT or 8770).")
    parser.add_argument(
        "--interview-type",
        default=None,
        choices=["screening", "technical", "behavioral", "mixed"],
        help="Round started when no round id is given.",
    )
    parser.add_argument(
        "--public-origin",
        default=None,
        help="Public origin of this host, used for provider callbacks and latency probes.",
    )
    parser.add_argument(
        "--output-dir",
        default=None,
        help="Override artifact output directory. Default: python/output.",
    )
    parser.add_argument(
        "--mock",
        action="store_true",
        help="Ignore TAVUS_API_KEY and run with the mock AI interviewer.",
    )
    parser.add_argument("--log-level", default="info", help="Uvicorn log level.")
    return parser.parse_args()


def main() -> None:
    args = parse_args()

    if args.host:
        os.environ["HOST_BIND"] = args.host
    if args.port:
        os.environ["HOST_PORT"] = str(args.port)
    if args.interview_type:
        os.environ["INTERVIEW_TYPE"] = args.interview_type
    if args.public_origin:
        os.environ["HOST_ORIGIN"] = args.public_origin
    if args.output_dir:
        os.environ["ARTIFACT_DIR"] = str(Path(args.output_dir).expanduser())
    if args.mock:
        os.environ["TAVUS_API_KEY"] = ""

    from avatar_interview import load_interview_config  # Import after env config
    from interview_host import create_app

    config = load_interview_config()
    print(
        f"Starting avatar interview host bind=http://{config.host_bind}:{config.host_port} "
        f"mock={not config.has_api_key} interview_type={config.interview_type} "
        f"output_dir={config.artifact_dir}"
    )
    uvicorn.run(
        create_app(config),
        host=config.host_bind,
        port=config.host_port,
        log_level=args.log_level,
    )


if __name__ == "__main__":
    main()
