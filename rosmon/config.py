from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    # Persistence of router configurations
    database_url: str = "sqlite+aiosqlite:///./rosmon.db"
    
    # Tokens are issued by the external auth service; empty secret disables auth
    jwt_secret: str = ""
    jwt_algorithm: str = "HS256"
    
    # Domain for CORS (optional, defaults to same-origin only)
    domain: str = ""
    
    log_level: str = "INFO"
    
    # Polling (seconds)
    rpc_poll_interval: float = 10.0
    rest_poll_interval: float = 5.0
    adapter_timeout: float = 5.0
    
    # Rolling history window sizes (samples)
    interface_history_size: int = 30
    client_history_size: int = 20
    
    @property
    def auth_enabled(self) -> bool:
        return bool(self.jwt_secret)
    
    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    return Settings()
