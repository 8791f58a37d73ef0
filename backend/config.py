import logging
import os

from dotenv import load_dotenv

load_dotenv()

PLACEHOLDER_KEY = "your-api-key-here"

ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")
ASSISTANT_MODEL = os.getenv("ASSISTANT_MODEL", "claude-sonnet-4-5")
ASSISTANT_MAX_TOKENS = int(os.getenv("ASSISTANT_MAX_TOKENS", "2048"))

# Premium voice (ElevenLabs); the default voice is "Rachel"
ELEVENLABS_API_KEY = os.getenv("ELEVENLABS_API_KEY")
ELEVENLABS_VOICE_ID = os.getenv("ELEVENLABS_VOICE_ID", "21m00Tcm4TlvDq8ikWAM")
ELEVENLABS_MODEL_ID = os.getenv("ELEVENLABS_MODEL_ID", "eleven_monolingual_v1")

DATABASE_PATH = os.getenv("DATABASE_PATH", "prose.db")
CHAT_HISTORY_KEY = os.getenv("CHAT_HISTORY_KEY", "aiChatHistory")

# Pause between the end of playback and reopening the microphone
VOICE_RESUME_DELAY = float(os.getenv("VOICE_RESUME_DELAY", "0.6"))

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",") if o.strip()]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def has_key(value: str | None) -> bool:
    """True when an API key is set to something other than the .env placeholder."""
    return bool(value) and value != PLACEHOLDER_KEY


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
