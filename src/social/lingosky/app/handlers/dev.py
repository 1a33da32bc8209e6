import logging

from aiohttp import web
import aiohttp_jinja2

from social.lingosky.app.config import OAuthStoreAppKey
from social.lingosky.app.handlers.helpers import error_response
from social.lingosky.atproto.errors import OAuthFlowError
from social.lingosky.atproto.redact import mask_secret

logger = logging.getLogger(__name__)


async def handle_dev_callback(request: web.Request):
    """
    Render the development callback page.

    Used as the redirect target when the dev redirect URI points at this
    service. Shows the code and state (or the provider error) and offers a form
    that posts them to the token endpoint.
    """
    context = {
        "code": request.query.get("code", ""),
        "state": request.query.get("state", ""),
        "error": request.query.get("error"),
        "error_description": request.query.get("error_description", ""),
    }
    return await aiohttp_jinja2.render_template_async(
        "dev_callback.html", request, context=context
    )


async def handle_debug_state(request: web.Request):
    """
    Report whether a PKCE record exists for a state.

    The code verifier is masked in the returned record.
    """
    state = request.query.get("state", "").strip()
    if not state:
        return error_response(OAuthFlowError.validation("state is required"))

    record = await request.app[OAuthStoreAppKey].get_pkce_record(state)
    if record is None:
        return web.json_response({"ok": True, "found": False})

    data = record.model_dump(mode="json")
    data["code_verifier"] = mask_secret(record.code_verifier)
    return web.json_response({"ok": True, "found": True, "data": data})
