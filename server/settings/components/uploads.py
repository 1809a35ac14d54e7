"""Upload reconciliation and storage volume settings."""

from server.settings.components import BASE_DIR, config

# Root of the user-visible volume (published files and folders)
UPLOAD_STORAGE_ROOT = config(
    'UPLOAD_BASE_DIR',
    default=str(BASE_DIR / 'uploads'),
)

# Directory under the storage root where the tus engine stages sessions
UPLOAD_STAGING_DIR = config('UPLOAD_STAGING_DIR', default='.staging')
UPLOAD_SIDECAR_SUFFIX = config('UPLOAD_SIDECAR_SUFFIX', default='.json')

# Bytes read per step while concatenating parts (32 MiB)
UPLOAD_COPY_CHUNK_SIZE = config(
    'UPLOAD_COPY_CHUNK_SIZE',
    cast=int,
    default=32 * 1024 * 1024,
)

# Orphaned part groups
UPLOAD_PART_TIMEOUT = config('UPLOAD_PART_TIMEOUT', cast=int, default=3600)
UPLOAD_REAPER_INTERVAL = config(
    'UPLOAD_REAPER_INTERVAL',
    cast=int,
    default=900,
)

# Staged content flush polling before a single-file publish
UPLOAD_FLUSH_POLL_INTERVAL = config(
    'UPLOAD_FLUSH_POLL_INTERVAL',
    cast=float,
    default=0.25,
)
UPLOAD_FLUSH_POLL_ATTEMPTS = config(
    'UPLOAD_FLUSH_POLL_ATTEMPTS',
    cast=int,
    default=8,
)

# Upload server host and port
UPLOAD_SERVER_HOST = config('UPLOAD_SERVER_HOST', default='0.0.0.0')  # noqa: S104
UPLOAD_SERVER_PORT = config('UPLOAD_SERVER_PORT', cast=int, default=1080)
