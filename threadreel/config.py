"""Runtime configuration, read once from the environment."""
import os
from pathlib import Path

BASE_DIR = Path(__file__).parent
PROJECT_DIR = BASE_DIR.parent

# Storage (support env vars for Docker deployment)
OUTPUT_DIR = Path(os.environ.get("OUTPUT_DIR", str(PROJECT_DIR / "output")))
WORK_DIR = Path(os.environ.get("WORK_DIR", str(PROJECT_DIR / "temp")))
GAMEPLAY_DIR = Path(os.environ.get("GAMEPLAY_DIR", str(PROJECT_DIR / "assets" / "gameplay")))
FONT_PATH = os.environ.get("FONT_PATH", str(PROJECT_DIR / "assets" / "fonts" / "Montserrat-Bold.ttf"))

# Thread source
REDDIT_USER_AGENT = os.getenv("REDDIT_USER_AGENT", "threadreel/1.0 (short-form video generator)")
REDDIT_TIMEOUT_SECONDS = float(os.getenv("REDDIT_TIMEOUT_SECONDS", "20"))

# Generative text (Ollama)
OLLAMA_URL = os.getenv("OLLAMA_URL", "http://localhost:11434/api/generate")
OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "qwen3:8b")
LLM_MAX_TOKENS = int(os.getenv("LLM_MAX_TOKENS", "1500"))
LLM_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.7"))
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "300"))

# Voice synthesis: "edge" (edge-tts with gTTS fallback) or "elevenlabs"
VOICE_PROVIDER = os.getenv("VOICE_PROVIDER", "edge").lower()
ELEVENLABS_API_KEY = os.getenv("ELEVENLABS_API_KEY", "")
ELEVENLABS_MODEL = os.getenv("ELEVENLABS_MODEL", "eleven_monolingual_v1")

# Rendering: "moviepy" (bundled worker) or "remotion"
RENDERER = os.getenv("RENDERER", "moviepy").lower()
REMOTION_ENTRY_POINT = os.getenv("REMOTION_ENTRY_POINT", "src/remotion/index.ts")
REMOTION_COMPOSITION_ID = os.getenv("REMOTION_COMPOSITION_ID", "ThreadVideo")
RENDER_CODEC = os.getenv("RENDER_CODEC", "libx264")
RENDER_TIMEOUT_SECONDS = float(os.getenv("RENDER_TIMEOUT_SECONDS", str(15 * 60)))
MAX_RENDER_OUTPUT_BYTES = int(os.getenv("MAX_RENDER_OUTPUT_BYTES", str(1024 * 1024)))

# Service
ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower()
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
JOB_MAX_AGE_HOURS = int(os.getenv("JOB_MAX_AGE_HOURS", "24"))


def is_production() -> bool:
    """Whether error details should be hidden from polling clients."""
    return ENVIRONMENT == "production"
