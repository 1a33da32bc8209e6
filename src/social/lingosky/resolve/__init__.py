"""
DID resolution used to locate a user's Personal Data Server.
"""
