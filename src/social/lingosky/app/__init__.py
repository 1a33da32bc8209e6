"""
Web application layer for the Lingosky gateway.

Contains the aiohttp server setup, configuration, middlewares and the request
handlers for the OAuth flow, session management and the PDS proxy endpoints.
"""
