# clairvoyance/config.py
"""
Pool Monitor Configuration
Ethereum mainnet Uniswap V3 pool observation
"""

import os
from dotenv import load_dotenv
from pathlib import Path

# -----------------------------
# Load .env safely
# -----------------------------
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / "config" / ".env"

if ENV_PATH.exists():
    load_dotenv(ENV_PATH)

# -----------------------------
# Chain Configuration
# -----------------------------
CHAIN_ID = 1  # Ethereum mainnet
CHAIN_NAME = "ethereum"

# -----------------------------
# RPC Configuration
# -----------------------------
RPC_URL = os.getenv("RPC_URL")


def require_rpc_url() -> str:
    """Return the configured RPC endpoint or fail loudly."""
    if not RPC_URL:
        raise RuntimeError("RPC_URL not set in .env")
    return RPC_URL


# -----------------------------
# Uniswap V3
# -----------------------------
UNISWAP_V3_FACTORY = os.getenv(
    "UNISWAP_V3_FACTORY", "0x1F98431c8aD98523631AE4a59f267346ea31F984"
)

# -----------------------------
# Token registry
# -----------------------------
TOKENS_FILE = os.getenv("TOKENS_FILE")  # optional JSON list, overrides built-ins

# -----------------------------
# Event stream
# -----------------------------
POLL_INTERVAL_SECONDS = float(os.getenv("POLL_INTERVAL_SECONDS", "2.0"))

# -----------------------------
# Safety Thresholds
# -----------------------------
MAX_RPC_LATENCY = float(os.getenv("MAX_RPC_LATENCY", "2.0"))  # seconds

# -----------------------------
# Price arithmetic
# -----------------------------
DECIMAL_PRECISION = 80  # significant digits for Q64.96 conversion

# -----------------------------
# Logging
# -----------------------------
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = Path(os.getenv("LOG_DIR", str(BASE_DIR / "logs")))
