import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

_BACKEND_ROOT = Path(__file__).resolve().parents[1]
_BACKEND_ENV_PATH = _BACKEND_ROOT / ".env"
load_dotenv(dotenv_path=_BACKEND_ENV_PATH, override=False)

DEFAULT_ASR_URL = "wss://eu2.rt.speechmatics.com/v2"
DEFAULT_LLM_MODEL = "gpt-4o-mini"


def _env_str(name: str, default: str = "") -> str:
    return str(os.getenv(name) or default).strip()


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    try:
        value = int(raw) if raw is not None and str(raw).strip() else default
    except ValueError:
        value = default
    return max(minimum, value)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not str(raw).strip():
        return default
    return str(raw).strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = _env_str(name)
    if not raw:
        return default
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    asr_api_key: str = ""
    asr_url: str = DEFAULT_ASR_URL
    asr_language: str = "en"
    llm_api_key: str = ""
    llm_model: str = DEFAULT_LLM_MODEL
    client_port: int = 5000
    heartbeat_interval_ms: int = 30000
    test_mode_first_delay_ms: int = 5000
    test_mode_interval_ms: int = 10000
    clear_transcript_after_answer: bool = True
    ws_max_text_bytes: int = 65536
    cors_allow_origins: tuple[str, ...] = (
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    )
    log_level: str = "INFO"

    @property
    def test_mode(self) -> bool:
        # no ASR credential means the simulated transcript source is used
        return not self.asr_api_key

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            asr_api_key=_env_str("ASR_API_KEY"),
            asr_url=_env_str("ASR_URL", DEFAULT_ASR_URL),
            asr_language=_env_str("ASR_LANGUAGE", "en"),
            llm_api_key=_env_str("LLM_API_KEY"),
            llm_model=_env_str("LLM_MODEL", DEFAULT_LLM_MODEL),
            client_port=_env_int("CLIENT_PORT", 5000, minimum=1),
            heartbeat_interval_ms=_env_int("HEARTBEAT_INTERVAL_MS", 30000, minimum=100),
            test_mode_first_delay_ms=_env_int("TEST_MODE_FIRST_DELAY_MS", 5000),
            test_mode_interval_ms=_env_int("TEST_MODE_INTERVAL_MS", 10000, minimum=100),
            clear_transcript_after_answer=_env_bool("CLEAR_TRANSCRIPT_AFTER_ANSWER", True),
            ws_max_text_bytes=_env_int("WS_MAX_TEXT_BYTES", 65536, minimum=1024),
            cors_allow_origins=_env_list("CORS_ALLOW_ORIGINS", cls.cors_allow_origins),
            log_level=_env_str("LOG_LEVEL", "INFO").upper(),
        )


_settings: Settings | None = None


def get_settings() -> Settings:
    """Settings are read from the environment once per process."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    global _settings
    _settings = None
