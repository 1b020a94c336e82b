"""Constants used throughout the aggregator."""

# Timeouts (in seconds)
OPERATOR_TIMEOUT = 10  # per-operator request bound
LEDGER_OP_TIMEOUT = 60  # 1 minute

# Sleep intervals (in seconds)
POLL_INTERVAL = 10

# Retry policy for unresolved tasks (in seconds)
RETRY_BASE_DELAY = 10
RETRY_MAX_DELAY = 600  # 10 minutes
MAX_RESOLUTION_ATTEMPTS = 20

# Ledger constants
DEFAULT_CHAIN_ENDPOINT = "ws://127.0.0.1:9944"
DEFAULT_SERVICE_PALLET = "SquareNumberService"
DEFAULT_STAKE_PALLET = "Staking"
DEFAULT_VAULT_PALLET = "Vaults"
TASK_REQUEST_EVENT = "TaskRequestGenerated"
SUBMIT_RESPONSE_CALL = "submit_task_response"
MAX_BLOCKS_PER_POLL = 500

# Operator HTTP protocol
OPERATOR_TASK_PATH = "/task"

# Checkpoint
DEFAULT_CHECKPOINT_PATH = "./checkpoint.json"
CHECKPOINT_TABLE = "aggregator_checkpoint"
