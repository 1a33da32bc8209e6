from aiohttp import web


async def handle_health(request: web.Request):
    return web.json_response({"ok": True})
