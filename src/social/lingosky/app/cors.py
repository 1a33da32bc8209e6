from typing import Dict, List, Optional

CORS_MAX_AGE = 86400


def get_cors_headers(
    origin_value: Optional[str], allowed_origins: List[str]
) -> Dict[str, str]:
    """Return CORS headers for a request origin.

    A `*` entry allows any origin. Otherwise the request origin is echoed back
    when it is listed, and no Access-Control-Allow-Origin header is sent when it
    is not.
    """
    headers = {
        "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type, Authorization",
        "Access-Control-Max-Age": str(CORS_MAX_AGE),
    }

    if "*" in allowed_origins:
        headers["Access-Control-Allow-Origin"] = "*"
    elif origin_value and origin_value.rstrip("/") in allowed_origins:
        headers["Access-Control-Allow-Origin"] = origin_value
        headers["Vary"] = "Origin"

    return headers
