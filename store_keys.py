"""Redis key layout shared by the deposit monitor, orchestrator and CLI."""

HEDGE_QUEUE = "hedge_requests"
LAST_PROCESSED_BLOCK = "last_processed_block"
DEPOSIT_INDEX = "deposits:timestamp"

DAY_SEC = 86400


def deposit_key(tx_hash: str) -> str:
    return f"deposit:{tx_hash}"


def position_key(tx_hash: str, venue: str) -> str:
    return f"hedge:{tx_hash}:{venue}"


def position_index_key(tx_hash: str) -> str:
    return f"hedge_index:{tx_hash}"


def execution_log_key(tx_hash: str) -> str:
    return f"hedge_log:{tx_hash}"


def claim_key(tx_hash: str) -> str:
    return f"hedge_claim:{tx_hash}"
