"""AT Protocol DID resolution utilities.

Resolves did:plc identifiers through the PLC directory and did:web identifiers through
their did.json document, extracting the Personal Data Server endpoint.
"""

from typing import Any, Dict, Optional

from aiohttp import ClientSession
from pydantic import BaseModel


class ResolvedDid(BaseModel):
    """Resolved DID with its handle (when published) and PDS endpoint."""

    did: str
    handle: Optional[str] = None
    pds: str


def handle_predicate(value: Any) -> bool:
    """Check if value is an AT Protocol handle reference."""
    return isinstance(value, str) and value.startswith("at://")


def pds_predicate(value: Dict[str, Any]) -> bool:
    """Check if service entry is an AT Protocol PDS.

    A service matches when its id is `#atproto_pds` (bare or DID-qualified) or its
    type is AtprotoPersonalDataServer, and it has a string serviceEndpoint.

    Args:
        value: Service dictionary from DID document

    Returns:
        True if service is a PDS with an endpoint
    """
    if not isinstance(value, dict):
        return False
    if not isinstance(value.get("serviceEndpoint"), str):
        return False
    service_id = value.get("id")
    return (
        isinstance(service_id, str) and service_id.endswith("#atproto_pds")
    ) or value.get("type") == "AtprotoPersonalDataServer"


def find_pds_endpoint(document: Dict[str, Any]) -> Optional[str]:
    """Return the PDS endpoint of a DID document, if it lists one.

    Both the standard `service` list and the legacy `services` spelling are read.
    """
    services = document.get("service") or document.get("services") or []
    if not isinstance(services, list):
        return None
    pds = next(filter(pds_predicate, services), None)
    if pds is None:
        return None
    return pds["serviceEndpoint"]


def parse_document(did: str, document: Any) -> Optional[ResolvedDid]:
    if not isinstance(document, dict):
        return None
    pds = find_pds_endpoint(document)
    if pds is None:
        return None
    also_known_as = document.get("alsoKnownAs")
    if not isinstance(also_known_as, list):
        also_known_as = []
    handle = next(filter(handle_predicate, also_known_as), None)
    return ResolvedDid(
        did=did,
        handle=handle.removeprefix("at://") if handle is not None else None,
        pds=pds,
    )


def did_web_document_url(did: str) -> Optional[str]:
    """Build the did.json URL for a did:web identifier."""
    parts = [part for part in did.removeprefix("did:web:").split(":") if part]
    if len(parts) == 0:
        return None

    parts[0] = parts[0].replace("%3A", ":").replace("%3a", ":")
    if len(parts) == 1:
        parts.append(".well-known")

    return "https://{inner}/did.json".format(inner="/".join(parts))


async def resolve_did_method_plc(
    session: ClientSession, plc_directory_url: str, did: str
) -> Optional[ResolvedDid]:
    """Resolve did:plc DID through the PLC directory.

    Args:
        session: HTTP client session
        plc_directory_url: Base URL of the PLC directory
        did: did:plc DID to resolve

    Returns:
        ResolvedDid if the document lists a PDS, None otherwise
    """
    url = f"{plc_directory_url.rstrip('/')}/{did}"
    async with session.get(url) as resp:
        if resp.status != 200:
            return None
        body = await resp.json(content_type=None)
    return parse_document(did, body)


async def resolve_did_method_web(
    session: ClientSession, did: str
) -> Optional[ResolvedDid]:
    """Resolve did:web DID through its did.json document.

    Args:
        session: HTTP client session
        did: did:web DID to resolve

    Returns:
        ResolvedDid if the document lists a PDS, None otherwise
    """
    url = did_web_document_url(did)
    if url is None:
        return None

    async with session.get(url) as resp:
        if resp.status != 200:
            return None
        body = await resp.json(content_type=None)
    return parse_document(did, body)


async def resolve_did(
    session: ClientSession, plc_directory_url: str, did: str
) -> Optional[ResolvedDid]:
    """Resolve DID to its PDS, routing on the DID method.

    Returns:
        ResolvedDid if successful, None if the method is unsupported or the
        document has no PDS
    """
    if did.startswith("did:plc:"):
        return await resolve_did_method_plc(session, plc_directory_url, did)
    elif did.startswith("did:web:"):
        return await resolve_did_method_web(session, did)
    return None
