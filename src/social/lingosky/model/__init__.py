"""
Records persisted by the gateway and the store that keeps them.
"""
