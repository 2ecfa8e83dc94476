"""Internal constants shared across the library."""

USER_AGENT = "paysync/1"

#: Maximum number of transactions kept client side.
MAX_ITEMS = 50

# ------------------------------------------------------------------
# Logical topics
# ------------------------------------------------------------------

TOPIC_BALANCE = "balance"
TOPIC_TRANSACTIONS = "transactions"

# ------------------------------------------------------------------
# Push message types
# ------------------------------------------------------------------

MSG_BALANCE_UPDATE = "balance_update"
MSG_INITIAL_TRANSACTIONS = "initial_transactions"
MSG_TRANSACTION_UPDATE = "transaction_update"

REQ_BALANCE = "request_balance_update"
REQ_INITIAL_TRANSACTIONS = "request_initial_transactions"

# ------------------------------------------------------------------
# Pull fallback endpoints
# ------------------------------------------------------------------

ENDPOINT_BALANCE = "/wallet/balance"
ENDPOINT_TRANSACTIONS = "/transactions"

DEFAULT_BALANCE_FALLBACK_DELAY = 3.0
DEFAULT_TRANSACTIONS_FALLBACK_DELAY = 3.0
DEFAULT_PULL_TIMEOUT = 15.0
