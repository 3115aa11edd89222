"""
Project constants definitions
"""

# ============================================================
# Timeouts (milliseconds)
# ============================================================

DEFAULT_CONNECT_TIMEOUT_MS = 60000
DEFAULT_TIMEOUT_MS = 30000
DEFAULT_DISCONNECT_TIMEOUT_MS = 10000

# ============================================================
# Connection Defaults
# ============================================================

DEFAULT_SSH_PORT = 22
DEFAULT_KEEPALIVE_INTERVAL = 60
DEFAULT_TERM = "vanilla"

# Tried in this order when no key file is configured
DEFAULT_KEY_FILES = (
    "~/.ssh/id_rsa",
    "~/.ssh/id_ed25519",
    "~/.ssh/id_ecdsa",
)

# ============================================================
# Transfer Sizes
# ============================================================

CHANNEL_READ_SIZE = 4096
SFTP_CHUNK_SIZE = 32768
SCP_CHUNK_SIZE = 4096

# ============================================================
# Permissions
# ============================================================

SFTP_UGO_MASK = 0o777
DEFAULT_FILE_MODE = 0o644
DEFAULT_DIR_MODE = 0o755

# ============================================================
# SFTP Status Codes
# ============================================================

SFTP_OK = 0
SFTP_EOF = 1
SFTP_NO_SUCH_FILE = 2
SFTP_PERMISSION_DENIED = 3
SFTP_FAILURE = 4

# ============================================================
# SSH Config
# ============================================================

SSH_CONFIG_PATH = "~/.ssh/config"
KNOWN_HOSTS_PATH = "~/.ssh/known_hosts"

# ============================================================
# Configuration
# ============================================================

ENV_PREFIX = "SSHMUX_"
DEFAULT_CONFIG_PATH = "~/.config/sshmux/config.toml"
