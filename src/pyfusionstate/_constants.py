"""Internal constants shared across the library."""

DEFAULT_KEY_PREFIX = "fusion_state"
ALL_KEYS_SUFFIX = "_all"
BACKUP_SUFFIX = "__backup__"
PERSIST_KEY_PREFIX = "persist."

# Backups older than this are ignored during recovery.
BACKUP_MAX_AGE_SECONDS: float = 7 * 24 * 3600

# Probe slot used by adapter detection.
PROBE_KEY = "fusion_test"

KEY_ALREADY_INITIALIZING = (
    'Key "{0}" is already being initialized. Check whether the key is initialized '
    "elsewhere or whether a subscriber re-initializes it."
)
KEY_MISSING_NO_INITIAL = (
    'Key "{0}" does not exist and no initial value was provided. '
    "Initialize the key with a value before use."
)
PERSISTENCE_READ_ERROR = "Failed to read state from storage: {0}"
PERSISTENCE_WRITE_ERROR = "Failed to write state to storage: {0}"
VALUE_NOT_SERIALIZABLE = 'Value for key "{0}" is not JSON serializable: {1}'
SUBSCRIBER_CALLBACK_ERROR = 'Error in state change callback for key "{0}": {1}'


def format_error_message(message: str, *values: object) -> str:
    """Fill ``{0}``, ``{1}`` ... placeholders in *message* with *values*."""
    for index, value in enumerate(values):
        message = message.replace(f"{{{index}}}", str(value))
    return message
