"""Project-wide constants (chunk sizes, TTLs, remote call limits)."""

CHUNK_SIZE_BYTES: int = 5 * 1024 * 1024  # 5 MiB suggested chunk size
MAX_CHUNKED_FILE_SIZE_BYTES: int = 100 * 1024 * 1024  # 100 MiB

UPLOAD_TASK_TTL_SECONDS: int = 3600

STREAM_PIECE_SIZE_BYTES: int = 64 * 1024

REMOTE_TIMEOUT_SECONDS: float = 30.0
REMOTE_MAX_RETRIES: int = 3
DEFAULT_RETRY_AFTER_SECONDS: float = 5.0

UPLOAD_TASK_KEY_PREFIX = "upload:"
CHUNK_KEY_PREFIX = "chunk:"
CHUNK_OBJECT_PREFIX = "chunk-upload"

# Key prefixes probed for records written before explicit backend prefixes existed.
LEGACY_KEY_PREFIXES = ("img:", "vid:", "aud:", "doc:", "r2:", "s3:", "discord:", "hf:", "")

DEFAULT_MIME_TYPE = "application/octet-stream"

URL_INGEST_MAX_BYTES: int = 20 * 1024 * 1024  # matches the relay's upload limit
URL_INGEST_TIMEOUT_SECONDS: float = 30.0
