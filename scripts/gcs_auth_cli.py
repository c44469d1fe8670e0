#!/usr/bin/env python3
"""
Mint access tokens and pre-signed URLs from a service-account key file.

Handy for checking a key against a bucket from a developer workstation or a
CI job without going through the storage backend:

    gcs_auth_cli.py sign --credentials key.json --bucket my-bucket --object a/b.jpg --verb PUT
    gcs_auth_cli.py token --credentials key.json
"""

import argparse
import asyncio
import json
import os
import sys
from typing import Dict, List, Optional

from pydantic import ValidationError

from service_gcs_auth.app.credentials import SignedURLOptions, load_credentials
from service_gcs_auth.app.main import GCSAuthService
from shared.config import get_config
from shared.errors import StorageAuthException
from shared.logging import configure_logging


def _parse_headers(values: List[str]) -> Dict[str, str]:
    headers = {}
    for value in values:
        name, sep, header_value = value.partition("=")
        if not sep or not name.strip():
            raise argparse.ArgumentTypeError(f"header must be NAME=VALUE, got {value!r}")
        headers[name.strip()] = header_value.strip()
    return headers


async def mint_token(credentials_path: str, token_uri: Optional[str]) -> dict:
    """Mint one access token and return the result as a dict."""
    overrides = {"token_uri": token_uri} if token_uri else {}
    credentials = load_credentials(credentials_path)
    async with GCSAuthService(config=get_config(**overrides)) as service:
        result = await service.get_access_token_for_credentials(credentials)
    return result.model_dump()


def sign_url(
    credentials_path: str,
    bucket: str,
    object_path: str,
    verb: str,
    expires_in: int,
    headers: Dict[str, str],
) -> dict:
    """Produce one signed URL and return the result as a dict."""
    credentials = load_credentials(credentials_path)
    service = GCSAuthService(config=get_config())
    options = SignedURLOptions(verb=verb, expires_in=expires_in, headers=headers)
    return service.sign_url(credentials, bucket, object_path, options).model_dump()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="GCS service-account token and signed URL helper.")
    parser.add_argument("--credentials", default=os.getenv("GOOGLE_APPLICATION_CREDENTIALS"), help="Path to the service-account JSON key")
    parser.add_argument("--log-level", default=os.getenv("GCS_AUTH_LOG_LEVEL", "warning"), help="Log level")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sign = subparsers.add_parser("sign", help="Print a pre-signed URL for one object")
    sign.add_argument("--bucket", required=True, help="Bucket name")
    sign.add_argument("--object", dest="object_path", required=True, help="Object path within the bucket")
    sign.add_argument("--verb", default="GET", help="HTTP verb the URL grants")
    sign.add_argument("--expires-in", type=int, default=3600, help="URL lifetime in seconds")
    sign.add_argument("--header", action="append", default=[], help="Extra signed header as NAME=VALUE (repeatable)")

    token = subparsers.add_parser("token", help="Mint an access token")
    token.add_argument("--token-uri", default=None, help="Override the OAuth2 token endpoint")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if not args.credentials:
        parser.error("--credentials is required when GOOGLE_APPLICATION_CREDENTIALS is unset")

    configure_logging("gcs-auth-cli", args.log_level)

    try:
        if args.command == "sign":
            result = sign_url(
                args.credentials,
                args.bucket,
                args.object_path,
                args.verb,
                args.expires_in,
                _parse_headers(args.header),
            )
        else:
            result = asyncio.run(mint_token(args.credentials, args.token_uri))
    except KeyboardInterrupt:
        return 130
    except (argparse.ArgumentTypeError, ValidationError) as exc:
        parser.error(str(exc))
    except StorageAuthException as exc:
        print(f"[gcs-auth] {exc.code}: {exc.message}", file=sys.stderr)
        return 1

    print(json.dumps(result, indent=2))
    return 0 if result["ok"] else 1


if __name__ == "__main__":
    raise SystemExit(main())
