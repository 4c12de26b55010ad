"""Background services: snapshot persistence.

Kept apart from the socket handlers so the debounce logic can be exercised
without a running Socket.IO server.
"""
