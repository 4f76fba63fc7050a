#!/usr/bin/env python3
"""
Workflow Connectors - Bitrix24 command-line caller

Calls one Bitrix24 REST method (or walks all pages of a list method) with
the configured credentials and prints the JSON payload.

Credentials come from --profile (YAML) or, without it, from BITRIX24_*
environment variables.

Exit codes:
    0  success
    1  the API returned a failure
    2  configuration problem (credentials, malformed JSON arguments)
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

# Make "src/" importable when running as: python3 scripts/b24_call.py
REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = REPO_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from workflow_connectors.bitrix24 import (  # noqa: E402
    Bitrix24Client,
    Bitrix24ConfigError,
    ExecutorConfig,
    RequestAuth,
    RequestOptions,
    credentials_from_env,
    parse_json_argument,
)


def setup_logging(log_level: str, log_file: Optional[Path]) -> logging.Logger:
    root = logging.getLogger("workflow_connectors")
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    root.handlers.clear()

    fmt = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # stdout carries the JSON result
    ch = logging.StreamHandler(sys.stderr)
    ch.setFormatter(fmt)
    ch.setLevel(root.level)
    root.addHandler(ch)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setFormatter(fmt)
        fh.setLevel(root.level)
        root.addHandler(fh)

    return logging.getLogger("workflow_connectors.b24_call")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        description="Call a Bitrix24 REST method and print the JSON result"
    )
    p.add_argument("endpoint", help="REST method, e.g. crm.deal.list")
    p.add_argument("--body", default="", help="JSON object sent as the request body.")
    p.add_argument("--query", default="", help="JSON object sent as query parameters.")
    p.add_argument(
        "--profile",
        default="",
        help="YAML connection profile. Without it BITRIX24_* env vars are used.",
    )
    p.add_argument(
        "--auth-type",
        default="",
        choices=["", "oauth2", "apikey", "webhook"],
        help="Override the configured auth type (env mode only).",
    )
    p.add_argument(
        "--request-auth",
        default="auto",
        choices=[a.value for a in RequestAuth],
        help="Force the token or webhook path for this call.",
    )
    p.add_argument(
        "--result-key",
        default="",
        help="Collect all pages, accumulating result[<key>] (e.g. tasks, items).",
    )
    p.add_argument("--access-token", default="", help="Access token override for this call.")
    p.add_argument(
        "--webhook-fallback",
        action="store_true",
        help="Retry through the webhook URL when token auth is rejected with 401.",
    )
    p.add_argument("--debug", action="store_true", help="Log every request (tokens are never logged).")
    p.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity.",
    )
    p.add_argument("--log-file", default="", help="Optional log file path.")
    return p.parse_args(argv)


def build_client(args: argparse.Namespace) -> Bitrix24Client:
    config = ExecutorConfig.from_env()
    if args.debug:
        config = config.model_copy(update={"debug": True})

    if args.profile.strip():
        return Bitrix24Client.from_profile(args.profile, config=config)

    auth_type, raw = credentials_from_env()
    return Bitrix24Client.from_config(args.auth_type or auth_type, raw, config=config)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    log_file = Path(args.log_file) if args.log_file.strip() else None
    logger = setup_logging("DEBUG" if args.debug else args.log_level, log_file)

    try:
        body = parse_json_argument(args.body, "--body")
        query = parse_json_argument(args.query, "--query")
        client = build_client(args)
    except Bitrix24ConfigError as e:
        logger.error("Configuration error: %s", e)
        return 2

    # only flags given on the command line override the profile's options
    overrides = {}
    if args.request_auth != RequestAuth.AUTO.value:
        overrides["auth"] = RequestAuth(args.request_auth)
    if args.access_token:
        overrides["access_token"] = args.access_token
    if args.webhook_fallback:
        overrides["allow_webhook_fallback"] = True
    options = RequestOptions(**overrides)

    with client:
        try:
            if args.result_key:
                output = client.collect_all_pages(
                    args.endpoint, body, query, result_key=args.result_key, options=options
                )
                exit_code = 1 if isinstance(output, dict) and output.get("error") else 0
            else:
                result = client.execute(args.endpoint, body, query, options=options)
                if result.ok:
                    output = result.payload
                    exit_code = 0
                else:
                    output = result.error.to_payload()
                    exit_code = 1
                    logger.error("%s: %s", result.error.code, result.error.description)
        except Bitrix24ConfigError as e:
            logger.error("Configuration error: %s", e)
            return 2

        if client.refreshed_token is not None:
            logger.warning("Access token was refreshed; update the stored credentials.")

    print(json.dumps(output, indent=2, ensure_ascii=False))
    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
