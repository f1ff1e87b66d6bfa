from pydantic import BaseModel

from smc_live.shared.config import config


def _str(key: str, default: str) -> str:
    return (config.get(key) or "").strip() or default


def _optional_str(key: str) -> str | None:
    return (config.get(key) or "").strip() or None


def _int(key: str, default: int) -> int:
    return int((config.get(key) or "").strip() or default)


def _float(key: str, default: float) -> float:
    return float((config.get(key) or "").strip() or default)


class AppEnvironConfig(BaseModel):
    DEBUG: bool = config.get_flag("DEBUG")

    API_HOST: str = _str("API_HOST", "0.0.0.0")
    API_PORT: int = _int("API_PORT", 5000)
    API_WORKERS: int = _int("API_WORKERS", 1)
    API_CORS_ORIGINS: list[str] = [
        x.strip() for x in _str("API_CORS_ORIGINS", "http://localhost:5173").split(",") if x.strip()
    ]
    # X-Api-Key for admin routes and RTMP server callbacks; unset disables the check
    ADMIN_API_TOKEN: str | None = _optional_str("ADMIN_API_TOKEN")
    MONGO_LABEL: str = _str("MONGO_LABEL", "default")

    # Streaming endpoints handed to the operator's encoder and to viewers
    RTMP_SERVER_URL: str = _str("RTMP_SERVER_URL", "rtmp://localhost:1935/live")
    HLS_BASE_URL: str = _str("HLS_BASE_URL", "http://localhost:8000")
    RECORDING_FORMAT: str = _str("RECORDING_FORMAT", "mp4")

    LIVE_OFFLINE_MESSAGE: str = _str(
        "LIVE_OFFLINE_MESSAGE",
        "No live stream currently active.",
    )

    # Session lifecycle policy
    # When True the backend marks a session live as soon as it is configured;
    # otherwise the RTMP publish callback promotes it.
    BROADCAST_AUTO_PROMOTE: bool = config.get_flag("BROADCAST_AUTO_PROMOTE", True)
    BROADCAST_ENFORCE_SINGLE_ACTIVE: bool = config.get_flag("BROADCAST_ENFORCE_SINGLE_ACTIVE")
    STREAM_KEY_MAX_ATTEMPTS: int = _int("STREAM_KEY_MAX_ATTEMPTS", 5)

    # Operator console / viewer client
    CHURCH_API_BASE_URL: str = _str("CHURCH_API_BASE_URL", "http://localhost:5000")
    CHURCH_API_TOKEN: str | None = _optional_str("CHURCH_API_TOKEN")
    CHURCH_API_TIMEOUT_SECONDS: float = _float("CHURCH_API_TIMEOUT_SECONDS", 30.0)
    THUMBNAIL_UPLOAD_URL: str | None = _optional_str("THUMBNAIL_UPLOAD_URL")
    # Largest image embedded inline when the upload fails
    THUMBNAIL_DATA_URI_MAX_BYTES: int = _int("THUMBNAIL_DATA_URI_MAX_BYTES", 512 * 1024)

    LIVE_POLL_INTERVAL_LIVE_MS: int = _int("LIVE_POLL_INTERVAL_LIVE_MS", 5000)
    LIVE_POLL_INTERVAL_IDLE_MS: int = _int("LIVE_POLL_INTERVAL_IDLE_MS", 15000)
    LIVE_REFRESH_DELAY_MS: int = _int("LIVE_REFRESH_DELAY_MS", 1500)

    DURABILITY_MAX_ATTEMPTS: int = _int("DURABILITY_MAX_ATTEMPTS", 4)
    DURABILITY_BASE_DELAY_SECONDS: float = _float("DURABILITY_BASE_DELAY_SECONDS", 1.0)
    DURABILITY_MAX_DELAY_SECONDS: float = _float("DURABILITY_MAX_DELAY_SECONDS", 30.0)


_app_environ_config = AppEnvironConfig()


def get_app_environ_config() -> AppEnvironConfig:
    return _app_environ_config
