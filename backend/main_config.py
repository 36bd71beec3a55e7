import os
BASE_DIR = os.path.dirname(os.path.abspath(__file__))
DB_DIR = os.path.join(BASE_DIR, "db")
SETTINGS_DIR = os.path.join(DB_DIR, "settings")
MESSAGES_DIR = os.path.join(DB_DIR, "messages")
SETTINGS_PATH = os.path.join(SETTINGS_DIR, "settings.json")
MESSAGES_DB_PATH = os.path.join(MESSAGES_DIR, "messages.db")
WORKSPACE_DIR = os.path.join(BASE_DIR, "workspace")

PROMPTS_DIR = os.path.join(BASE_DIR, "prompts")
DEFAULT_SYSTEM_PROMPT_PATH = os.path.join(PROMPTS_DIR, "agent_system_prompt.md")
