"""Application-level constants for aibox.

This module keeps only cross-cutting app/file/path constants and the
settings keys shared with the settings collaborator.
"""

# ============================================================================
# Application identity
# ============================================================================

APP_NAME = "aibox"
APP_VERSION = "0.1.0"

# ============================================================================
# File extensions and paths
# ============================================================================

LOG_FILE_EXTENSION = ".log"

USER_DATA_DIR = f"~/.{APP_NAME}"
DEFAULT_SETTINGS_FILE = f"{USER_DATA_DIR}/settings.json"
DEFAULT_DATABASE_FILE = f"{USER_DATA_DIR}/{APP_NAME}.db"
DEFAULT_LOGS_DIR = f"{USER_DATA_DIR}/logs"
REPL_HISTORY_FILE = f"{USER_DATA_DIR}/history"

DATETIME_FORMAT_FILENAME = "%Y-%m-%d_%H-%M-%S"

# ============================================================================
# Settings keys
# ============================================================================

SETTING_OPENAI_API_KEY = "openai_api_key"
SETTING_OPENAI_BASE_URL = "openai_base_url"
SETTING_CLAUDE_API_KEY = "claude_api_key"
SETTING_CLAUDE_BASE_URL = "claude_base_url"
SETTING_OLLAMA_HOST = "ollama_host"
SETTING_COPILOT_OAUTH_TOKEN = "copilot_oauth_token"
SETTING_DEFAULT_MODEL = "default_model"
SETTING_EMBEDDING_MODEL = "embedding_model"

SETTING_KEYS = (
    SETTING_OPENAI_API_KEY,
    SETTING_OPENAI_BASE_URL,
    SETTING_CLAUDE_API_KEY,
    SETTING_CLAUDE_BASE_URL,
    SETTING_OLLAMA_HOST,
    SETTING_COPILOT_OAUTH_TOKEN,
    SETTING_DEFAULT_MODEL,
    SETTING_EMBEDDING_MODEL,
)

# Keys whose values are secrets (kept out of plain files when keyring is on).
SECRET_SETTING_KEYS = frozenset(
    {
        SETTING_OPENAI_API_KEY,
        SETTING_CLAUDE_API_KEY,
        SETTING_COPILOT_OAUTH_TOKEN,
    }
)

# ============================================================================
# Provider endpoints
# ============================================================================

DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_CLAUDE_BASE_URL = "https://api.anthropic.com"
DEFAULT_OLLAMA_HOST = "http://localhost:11434"

COPILOT_API_BASE_URL = "https://api.githubcopilot.com"
GITHUB_DEVICE_CODE_URL = "https://github.com/login/device/code"
GITHUB_ACCESS_TOKEN_URL = "https://github.com/login/oauth/access_token"
COPILOT_TOKEN_URL = "https://api.github.com/copilot_internal/v2/token"
DEVICE_CODE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"

# Public OAuth app id used by editor integrations for the device flow.
DEFAULT_COPILOT_CLIENT_ID = "Iv1.b507a08c87ecfe98"
COPILOT_EDITOR_VERSION = f"{APP_NAME}/{APP_VERSION}"
COPILOT_INTEGRATION_ID = "vscode-chat"

# ============================================================================
# Retrieval defaults
# ============================================================================

DEFAULT_CHUNK_SIZE = 512
DEFAULT_CHUNK_OVERLAP = 64
DEFAULT_EMBEDDING_BATCH_SIZE = 20
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"
DEFAULT_RETRIEVAL_TOP_K = 5

# Refresh the short-lived API token when it is this close to expiry.
TOKEN_SAFETY_MARGIN_SEC = 120

DEFAULT_CLAUDE_MAX_TOKENS = 4096
