from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    APP_NAME: str = "Asset Tracking GPS Service"
    PROD: bool = False

    # GPS TCP Server configuration
    GPS_TCP_ENABLED: bool = True
    GPS_TCP_HOST: str = "0.0.0.0"
    GPS_TCP_PORT: int = 50100
    # Bytes kept per connection while waiting for a '#' delimiter
    GPS_MAX_BUFFER_SIZE: int = 8192

    # Device registry
    DEVICE_ONLINE_WINDOW_SECONDS: int = 300
    # Reject registering a vehicle that another device already tracks
    ENFORCE_UNIQUE_VEHICLE: bool = True

    # Redis pub/sub fan-out (optional)
    REDIS_PUBSUB_ENABLED: bool = False
    # Full Redis URL (overrides individual settings)
    REDIS_URL: Optional[str] = None
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: Optional[str] = None
    REDIS_CHANNEL_PREFIX: str = "gps"

    # HTTP API
    API_RATE_LIMIT: str = "100/5seconds"
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    def get_redis_url(self) -> str:
        """Get Redis URL from environment or construct from individual settings"""
        if self.REDIS_URL:
            return self.REDIS_URL

        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        else:
            return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    def get_cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(',') if origin.strip()]

    class Config:
        env_file = '.env'


settings = Settings()
