import json
import os
from typing import Any, Dict, List

from pydantic import BaseModel, Field, validator
import logging

logger = logging.getLogger(__name__)

CONFIG_PATH = os.getenv("CONFIG_PATH", "config.json")

MB = 1024 * 1024


class RedisConfig(BaseModel):
    url: str = Field(default="redis://redis:6379", description="Redis connection URL")
    socket_timeout: int = Field(default=5, description="Redis socket timeout in seconds")


class ClientsConfig(BaseModel):
    player_clients: List[str] = Field(
        default=["WEB_EMBEDDED", "IOS", "ANDROID", "TV"],
        description="Device profiles queried in addition to the web page, in priority order",
    )
    lang: str = Field(default="en", description="Default interface language sent to the platform")

    @validator("player_clients")
    def validate_player_clients(cls, v):
        known = {"WEB", "WEB_EMBEDDED", "TV", "IOS", "ANDROID"}
        cleaned = [c.strip().upper() for c in v if c and c.strip()]
        unknown = [c for c in cleaned if c not in known]
        if unknown:
            raise ValueError(f"Unknown player clients: {unknown}")
        return cleaned


class RetryConfig(BaseModel):
    max_retries: int = Field(default=3, ge=0, description="Retries for 5xx and transport failures")
    backoff_inc: float = Field(default=0.5, ge=0, description="Backoff increment in seconds")
    backoff_max: float = Field(default=5.0, ge=0, description="Backoff ceiling in seconds")


class CacheConfig(BaseModel):
    info_ttl: float = Field(default=1.0, ge=0, description="Resolved info cache TTL in seconds")
    watch_page_ttl: float = Field(default=1.0, ge=0, description="Watch page body cache TTL in seconds")
    cipher_ttl: float = Field(default=0.001, ge=0, description="Compiled player script cache TTL in seconds")
    api_info_ttl: int = Field(default=300, ge=0, description="Redis TTL for /info responses")


class CipherConfig(BaseModel):
    execution_timeout: float = Field(default=2.0, gt=0, description="Time budget per script invocation")
    save_debug_files: bool = Field(default=False, description="Save unparseable player scripts to disk")
    debug_dir: str = Field(default=".", description="Directory for saved player scripts")


class DownloadConfig(BaseModel):
    dl_chunk_size: int = Field(default=10 * MB, ge=0, description="Chunk size for adaptive formats, 0 disables")
    high_water_mark: int = Field(default=512 * 1024, ge=1, description="Buffered bytes before the producer waits")
    max_reconnects: int = Field(default=6, ge=0, description="Reconnects per request on truncated transfers")
    max_retries: int = Field(default=3, ge=0, description="Retries per request on 5xx")
    backoff_inc: float = Field(default=0.5, ge=0, description="Backoff increment in seconds")
    backoff_max: float = Field(default=10.0, ge=0, description="Backoff ceiling in seconds")
    live_buffer: int = Field(default=20000, ge=0, description="Milliseconds behind the live edge to start")
    chunk_readahead: int = Field(default=3, ge=1, description="Segments fetched ahead of the one being emitted")
    request_timeout: float = Field(default=30.0, gt=0, description="HTTP timeout in seconds")


class UpdateCheckConfig(BaseModel):
    enabled: bool = Field(default=True, description="Check PyPI for a newer release")
    interval: int = Field(default=12 * 60 * 60, ge=60, description="Seconds between checks")
    package: str = Field(default="ytstream", description="Package name on the index")


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO", description="Log level (DEBUG, INFO, WARNING, ERROR)")
    format: str = Field(default="%(message)s", description="Log format")
    enable_rich: bool = Field(default=True, description="Enable rich console logging")

    @validator('level')
    def validate_log_level(cls, v):
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()


class LocaleConfig(BaseModel):
    default_locale: str = Field(default="en", description="Default locale")
    supported_locales: list = Field(default=["en", "ja", "de", "fr", "es"], description="Supported locales")


class ApiConfig(BaseModel):
    title: str = Field(default="ytstream API", description="API title")
    description: str = Field(default="Resolve and stream video formats", description="API description")
    version: str = Field(default="5.0.0", description="API version")
    cors_origins: list = Field(default=["*"], description="CORS allowed origins")
    debug: bool = Field(default=False, description="Enable debug mode")


class Config(BaseModel):
    """Main configuration model"""
    redis: RedisConfig = Field(default_factory=RedisConfig)
    clients: ClientsConfig = Field(default_factory=ClientsConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    cipher: CipherConfig = Field(default_factory=CipherConfig)
    download: DownloadConfig = Field(default_factory=DownloadConfig)
    update_check: UpdateCheckConfig = Field(default_factory=UpdateCheckConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    locale: LocaleConfig = Field(default_factory=LocaleConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)

    @classmethod
    def load_from_file(cls, config_path: str = "config.json") -> "Config":
        """Load configuration from JSON file"""
        if os.path.exists(config_path):
            try:
                with open(config_path, 'r', encoding='utf-8') as f:
                    config_data = json.load(f)
                logger.info(f"Configuration loaded from {config_path}")
                return cls(**config_data)
            except Exception as e:
                logger.error(f"Failed to load config from {config_path}: {str(e)}")
                logger.info("Using default configuration")
        else:
            logger.warning(f"Config file {config_path} not found, using defaults")

        return cls()

    @classmethod
    def load_from_env(cls) -> "Config":
        """Load configuration from environment variables (fallback)"""
        config_data: Dict[str, Any] = {}

        if os.getenv("REDIS_URL"):
            config_data["redis"] = {"url": os.getenv("REDIS_URL")}

        clients = {}
        if os.getenv("YTSTREAM_PLAYER_CLIENTS"):
            clients["player_clients"] = os.getenv("YTSTREAM_PLAYER_CLIENTS").split(",")
        if os.getenv("YTSTREAM_LANG"):
            clients["lang"] = os.getenv("YTSTREAM_LANG")
        if clients:
            config_data["clients"] = clients

        if os.getenv("YTSTREAM_CIPHER_TTL"):
            config_data["cache"] = {"cipher_ttl": float(os.getenv("YTSTREAM_CIPHER_TTL"))}

        if os.getenv("YTSTREAM_CHUNK_SIZE"):
            config_data["download"] = {"dl_chunk_size": int(os.getenv("YTSTREAM_CHUNK_SIZE"))}

        if os.getenv("YTSTREAM_NO_UPDATE"):
            config_data["update_check"] = {"enabled": False}

        if os.getenv("LOG_LEVEL"):
            config_data["logging"] = {"level": os.getenv("LOG_LEVEL")}

        if os.getenv("DEFAULT_LOCALE"):
            config_data["locale"] = {"default_locale": os.getenv("DEFAULT_LOCALE")}

        return cls(**config_data) if config_data else cls()

    def save_to_file(self, config_path: str = "config.json"):
        """Save configuration to JSON file"""
        try:
            with open(config_path, 'w', encoding='utf-8') as f:
                json.dump(self.model_dump(exclude_none=True), f, indent=2, ensure_ascii=False)
            logger.info(f"Configuration saved to {config_path}")
        except Exception as e:
            logger.error(f"Failed to save config to {config_path}: {str(e)}")


def load_config() -> Config:
    """Load configuration with priority: config.json > env vars > defaults"""
    if os.path.exists(CONFIG_PATH):
        return Config.load_from_file(CONFIG_PATH)
    logger.info(f"Config file not found at {CONFIG_PATH}, checking environment variables")
    return Config.load_from_env()


config = load_config()
