STATE_DIR_NAME = ".task_hero"
STORE_FILE = "board.yaml"
LOCK_FILE = "board.lock"
CONFIG_FILE = "config.yaml"
EVENTS_FILE = "events.jsonl"
STORE_VERSION = 1

WINDOWS_LOCK_BYTES = 4096

DEFAULT_LOG_LEVEL = "INFO"
LOG_LEVEL_ENV_VAR = "TASK_HERO_LOG_LEVEL"
