"""
bidstream: real-time penny auction marketplace client.

Keeps a local view of live auctions in sync with the marketplace server over
one auto-reconnecting WebSocket, runs per-auction countdowns, and pushes bids
and bid pack purchases through a validate -> authorize -> commit ->
invalidate pipeline.
"""

__version__ = "0.1.0"
