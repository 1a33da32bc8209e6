from typing import List
import argparse
import aiohttp
import asyncio
import logging

from social.lingosky.resolve.did import resolve_did

logger = logging.getLogger(__name__)


async def realMain() -> None:
    parser = argparse.ArgumentParser(prog="lingosky-resolve", description="Resolve DIDs to their PDS")
    parser.add_argument("did", nargs="+", help="The DID(s) to resolve.")
    parser.add_argument(
        "--plc-directory-url",
        default="https://plc.directory",
        help="The PLC directory used for resolving did-method-plc DIDs.",
    )

    args = vars(parser.parse_args())

    dids: List[str] = args.get("did", [])

    async with aiohttp.ClientSession() as session:
        for did in dids:
            try:
                resolved = await resolve_did(session, args["plc_directory_url"], did)
                print(f"{did} {resolved}")
            except (aiohttp.ClientError, asyncio.TimeoutError):
                logger.exception("Exception resolving did %s", did)


def main() -> None:
    logging.basicConfig()
    asyncio.run(realMain())


if __name__ == "__main__":
    main()
