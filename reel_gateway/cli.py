from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Sequence

import httpx

from .config import RuntimeSecrets, load_config, resolve_runtime_secrets
from .config_schema import AppConfig
from .errors import ConfigError, PreconditionError, TranslationError
from .event_log import EventLogger, request_scope
from .providers import parse_media_query, reel_metadata_descriptors
from .resolver import ResolutionFailure, build_strategies, resolve
from .translation import (
    AUTO_LANGUAGE,
    GenerativeTranslator,
    PublicTranslateClient,
    translate_text,
)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="reel_gateway")

    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser(
        "serve",
        help="Run the HTTP service.",
    )
    serve.add_argument(
        "--config",
        default=None,
        help="Path to YAML config file (defaults are used when omitted).",
    )
    serve.add_argument("--host", default="127.0.0.1", help="Bind address.")
    serve.add_argument("--port", type=int, default=8000, help="Bind port.")
    serve.set_defaults(_handler=_cmd_serve)

    lookup = subparsers.add_parser(
        "lookup",
        help="Resolve reel metadata for a post URL or shortcode and print it as JSON.",
    )
    lookup.add_argument("target", help="Instagram post URL or bare shortcode.")
    lookup.add_argument("--config", default=None, help="Path to YAML config file.")
    lookup.set_defaults(_handler=_cmd_lookup)

    translate = subparsers.add_parser(
        "translate",
        help="Translate text (argument or stdin) and print the result.",
    )
    translate.add_argument("text", nargs="?", default=None, help="Text to translate; stdin if omitted.")
    translate.add_argument("--to", dest="target", default=None, help="Target language code.")
    translate.add_argument(
        "--from",
        dest="source",
        default=AUTO_LANGUAGE,
        help="Source language code (default: auto-detect).",
    )
    translate.add_argument("--config", default=None, help="Path to YAML config file.")
    translate.set_defaults(_handler=_cmd_translate)

    return parser


def _eprint(message: str) -> None:
    print(message, file=sys.stderr)


def _load(args: argparse.Namespace) -> tuple[AppConfig, RuntimeSecrets]:
    cfg = load_config(args.config)
    return cfg, resolve_runtime_secrets(cfg)


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from .app import create_app

    cfg, secrets = _load(args)
    log = EventLogger(path=cfg.logging.path, min_level=cfg.logging.level)
    log.info(
        "server_starting",
        host=args.host,
        port=args.port,
        config_path=str(args.config) if args.config else None,
        apify_enabled=bool(secrets.apify_token),
        generative_enabled=bool(secrets.generative_api_key),
    )

    app = create_app(cfg, secrets, logger=log)
    try:
        uvicorn.run(app, host=args.host, port=args.port)
    finally:
        log.close()
    return 0


async def _lookup(cfg: AppConfig, secrets: RuntimeSecrets, target: str, log: EventLogger) -> dict:
    from .app import reel_info_failure_payload, reel_info_payload

    t = (target or "").strip()
    if "/" in t:
        query = parse_media_query(url=t)
    else:
        query = parse_media_query(shortcode=t)

    async with httpx.AsyncClient(follow_redirects=True) as client:
        strategies = build_strategies(
            reel_metadata_descriptors(secrets, providers=cfg.providers),
            client=client,
            timeout_seconds=cfg.providers.timeout_seconds,
        )
        result = await resolve(query, strategies, operation="reel_metadata", logger=log)

    if isinstance(result, ResolutionFailure):
        return reel_info_failure_payload(result)
    return reel_info_payload(query, result)


def _cmd_lookup(args: argparse.Namespace) -> int:
    cfg, secrets = _load(args)
    with EventLogger.open(cfg.logging.path, min_level=cfg.logging.level) as log, request_scope():
        payload = asyncio.run(_lookup(cfg, secrets, args.target, log))

    print(json.dumps(payload, indent=2, ensure_ascii=False))
    return 0 if payload.get("success") else 4


async def _translate(
    cfg: AppConfig,
    secrets: RuntimeSecrets,
    text: str,
    *,
    target: str,
    source: str,
    log: EventLogger,
) -> str:
    generative = None
    if secrets.generative_api_key:
        generative = GenerativeTranslator(
            secrets.generative_api_key,
            generative_cfg=cfg.generative,
            logger=log,
        )

    async with httpx.AsyncClient(follow_redirects=True) as client:
        translator = PublicTranslateClient(
            client,
            endpoint=cfg.translation.public_endpoint,
            timeout_seconds=cfg.translation.timeout_seconds,
        )
        result = await translate_text(
            text,
            target,
            source=source,
            translator=translator,
            translation_cfg=cfg.translation,
            generative=generative,
            logger=log,
        )

    return result.translated


def _cmd_translate(args: argparse.Namespace) -> int:
    cfg, secrets = _load(args)
    text = args.text if args.text is not None else sys.stdin.read()
    target = args.target or cfg.translation.default_target

    with EventLogger.open(cfg.logging.path, min_level=cfg.logging.level) as log, request_scope():
        translated = asyncio.run(
            _translate(cfg, secrets, text, target=target, source=args.source, log=log)
        )

    print(translated)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    try:
        handler = getattr(args, "_handler")
        return int(handler(args))
    except ConfigError as e:
        _eprint(str(e))
        return 2
    except PreconditionError as e:
        _eprint(str(e))
        return 2
    except TranslationError as e:
        _eprint(str(e))
        return 3
    except KeyboardInterrupt:
        _eprint("Interrupted")
        return 130
    except Exception as e:
        _eprint(f"Unexpected error: {e}")
        return 1
