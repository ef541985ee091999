import os

from dotenv import load_dotenv

load_dotenv()

def env_flag(name, default='false'):
    return os.getenv(name, default).lower() in ('true', '1', 'yes')

# Load persisted snapshots but don't refresh stale ones on boot.
SKIP_INITIAL_UPDATE = env_flag('SKIP_INITIAL_UPDATE')

# Only fetch the first page of every paginated collection.
STOP_EARLY = env_flag('STOP_EARLY')

# Dump raw scoring responses per chunk into <data_dir>/captures.
CAPTURE_CLIENT_OUTPUTS_TO_DISK = env_flag('CAPTURE_CLIENT_OUTPUTS_TO_DISK')
