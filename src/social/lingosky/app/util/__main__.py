import argparse
import asyncio
import base64
import json
import logging
import sys

from cryptography.fernet import Fernet
from pydantic import ValidationError

from social.lingosky.app.config import Settings
from social.lingosky.atproto.jwt import generate_dpop_key

logger = logging.getLogger(__name__)


async def genDpopKey() -> None:
    keypair = generate_dpop_key()
    print(json.dumps(keypair.private_jwk))


async def genCryptoKey() -> None:
    key = Fernet.generate_key()
    print(base64.b64encode(key).decode("utf-8"))


async def checkConfig() -> int:
    try:
        settings = Settings()  # type: ignore
    except ValidationError as e:
        print(f"Invalid configuration:\n{e}", file=sys.stderr)
        return 1

    print(f"environment={settings.environment}")
    print(f"issuer={settings.bsky_issuer}")
    print(f"token_endpoint={settings.token_endpoint_url}")
    print(f"redirect_uri={settings.redirect_uri}")
    print(f"dev_routes_enabled={settings.dev_routes_enabled}")
    return 0


async def realMain() -> int:
    parser = argparse.ArgumentParser(prog="lingosky-util", description="Lingosky utilities")

    subparsers = parser.add_subparsers(dest="command", required=True)

    _ = subparsers.add_parser("gen-dpop-key", help="Generate an ES256 DPoP JWK")
    _ = subparsers.add_parser("gen-crypto", help="Generate an encryption key")
    _ = subparsers.add_parser(
        "check-config", help="Validate the environment configuration"
    )

    args = vars(parser.parse_args())
    command = args.get("command", None)

    if command == "gen-dpop-key":
        await genDpopKey()
    elif command == "gen-crypto":
        await genCryptoKey()
    elif command == "check-config":
        return await checkConfig()
    return 0


def main() -> None:
    sys.exit(asyncio.run(realMain()))


if __name__ == "__main__":
    main()
