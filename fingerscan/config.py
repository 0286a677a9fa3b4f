from dotenv import load_dotenv
from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class LoggingConfig(BaseModel):
    LOG_STD_LEVEL: str = "INFO"

    # Optional rotating log file (console only when unset)
    LOG_FILE: str | None = None


class MantraConfig(BaseModel):
    # Vendor driver endpoints (trailing slash required)
    MS100_URL: str = "https://localhost:8003/mfs100/"
    MS500_URL: str = "http://localhost:8030/morfinauth/"

    DEFAULT_DEVICE: str = "MS100"

    # Capture parameters sent to the device
    DEFAULT_QUALITY: int = 60
    DEFAULT_TIMEOUT: int = 10

    # Status query timeout (in seconds)
    PROBE_TIMEOUT: float = 3.0

    # MFS100 service ships a self-signed localhost certificate
    VERIFY_SSL: bool = False


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    DEBUG: bool = False

    # Mantra device configuration
    MANTRA: MantraConfig = MantraConfig()

    # Logging configuration
    LOGGING: LoggingConfig = LoggingConfig()


settings = Settings()
