"""
Client configuration settings.
All tunable parameters in one place.
"""
import os

# ============================================================
# Endpoints
# ============================================================
ORIGIN = os.getenv("BIDSTREAM_ORIGIN", "http://localhost:3000")
API_PREFIX = "/api"
STREAM_PATH = "/ws"

# ============================================================
# Event Stream
# ============================================================
RECONNECT_DELAY = float(os.getenv("RECONNECT_DELAY", "3.0"))   # After an unexpected close
RETRY_DELAY = float(os.getenv("RETRY_DELAY", "5.0"))           # After a failed connection attempt
STREAM_HEARTBEAT = 30.0        # Ping interval (aiohttp heartbeat)

# ============================================================
# Countdown
# ============================================================
TICK_INTERVAL = 1.0            # Seconds between countdown ticks

# ============================================================
# Auction Mechanics (penny auction)
# ============================================================
BID_INCREMENT = 0.03           # Each bid raises the price by this much

# ============================================================
# Commit requests
# ============================================================
# None = wait indefinitely for the server of record
COMMIT_TIMEOUT = float(os.getenv("COMMIT_TIMEOUT")) if os.getenv("COMMIT_TIMEOUT") else None
READ_TIMEOUT = 10.0

# ============================================================
# Wallet / Session
# ============================================================
DEFAULT_CHAIN_ID = 1           # Ethereum mainnet
SUPPORTED_CHAINS = {
    1: "ETH",
    137: "MATIC",
    8453: "ETH",
}
DRY_RUN = os.getenv("DRY_RUN", "true").lower() == "true"
SIMULATED_ADDRESS = os.getenv(
    "SIMULATED_ADDRESS", "0x5a1e000000000000000000000000000000c0ffee"
)

# ============================================================
# Local storage
# ============================================================
STORAGE_PATH = os.getenv(
    "BIDSTREAM_STORAGE",
    os.path.join(os.path.expanduser("~"), ".bidstream", "storage.json"),
)
DEFAULT_CURRENCY_DISPLAY = "native"   # 'native' or 'usd'
