from functools import lru_cache
from typing import List, Literal, Optional, Union
from pydantic import AnyHttpUrl, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    PROJECT_NAME: str = "Prescription Ledger"
    API_V1_STR: str = "/api/v1"

    # CORS
    BACKEND_CORS_ORIGINS: List[AnyHttpUrl] = []

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",") if i.strip()]
        elif isinstance(v, (list, str)):
            return v
        raise ValueError(v)

    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Ledger
    LEDGER_BACKEND: Literal["local", "chain"] = "local"
    LEDGER_DATABASE_URL: str = "sqlite:///./rxledger.db"

    # Chain Core
    CHAIN_URL: str = "http://localhost:1999"
    CHAIN_ACCESS_TOKEN: Optional[str] = None
    CHAIN_HSM_URL: Optional[str] = None
    CHAIN_TIMEOUT: float = 30.0

    @model_validator(mode='after')
    def assemble_chain_urls(self) -> 'Settings':
        self.CHAIN_URL = self.CHAIN_URL.rstrip("/")
        if not self.CHAIN_HSM_URL:
            self.CHAIN_HSM_URL = f"{self.CHAIN_URL}/mockhsm"
        if self.CHAIN_ACCESS_TOKEN and ":" not in self.CHAIN_ACCESS_TOKEN:
            raise ValueError("CHAIN_ACCESS_TOKEN must have the form user:secret")
        return self

    # Default signing credentials for the HTTP surface
    ISSUER_XPUB: Optional[str] = None
    HOLDER_XPUB: Optional[str] = None

    model_config = SettingsConfigDict(case_sensitive=True, env_file=".env", extra='ignore')


@lru_cache()
def get_settings() -> Settings:
    return Settings()
