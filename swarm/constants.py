"""Swarm constants and enumerations."""

from enum import Enum

# Directories and files
STATE_DIR = ".swarm-hug"
WORKTREES_DIR = f"{STATE_DIR}/worktrees"
LOGS_DIR = f"{STATE_DIR}/logs"
CONFIG_FILE = f"{STATE_DIR}/config.yaml"
TASKS_FILE = "tasks.md"
CHAT_FILE = "chat.md"
SPRINT_HISTORY_FILE = "sprint-history.json"
TEAM_STATE_FILE = "team-state.json"
STATE_SCHEMA_VERSION = 1

# Git identities
SCRUM_MASTER_NAME = "Swarm ScrumMaster"
SCRUM_MASTER_EMAIL = "swarm@local"
AGENT_EMAIL_DOMAIN = "swarm.local"
DEAD_LETTER_REF_PREFIX = "refs/swarm/dead-letter"

# Defaults
DEFAULT_PROJECT = "swarm"
DEFAULT_TARGET_BRANCH = "main"
DEFAULT_MAX_AGENTS = 3
DEFAULT_TASKS_PER_AGENT = 2
DEFAULT_MAX_CONSECUTIVE_FAILED_SPRINTS = 3
DEFAULT_ENGINE_TIMEOUT_SECONDS = 3600
DEFAULT_HEARTBEAT_INTERVAL_SECONDS = 300
RUN_HASH_LENGTH = 6
RUN_HASH_ALPHABET = "abcdefghijklmnopqrstuvwxyz0123456789"

# Process exit codes
EXIT_TIMEOUT = 124
EXIT_INTERRUPTED = 130
MAX_INTERRUPTS = 3

# Messages
SHUTDOWN_ERROR = "Shutdown requested"
HEARTBEAT_PREFIX = "Still working on"


class AgentState(Enum):
    """Per-agent lifecycle state within a sprint."""

    ASSIGNED = "assigned"
    WORKING = "working"
    DONE = "done"
    TERMINATED = "terminated"


class MergeStatus(Enum):
    """Outcome of merging a branch."""

    SUCCESS = "success"
    CONFLICT = "conflict"
    NO_BRANCH = "no_branch"
    NO_CHANGES = "no_changes"
    ERROR = "error"


class EngineType(Enum):
    """Engine implementations selectable from configuration."""

    STUB = "stub"
    COMMAND = "command"
