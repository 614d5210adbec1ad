"""
PyDistrib worker discovery
Locates a coordinating server via IP multicast and binds this worker's
identity to it with a two-message unicast handshake
"""

__version__ = "0.3.0"
