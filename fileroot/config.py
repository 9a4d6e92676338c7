from __future__ import annotations

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8')

    app_name: str = 'fileroot'
    app_host: str = '0.0.0.0'
    app_port: int = Field(default=3000, validation_alias=AliasChoices('app_port', 'port'))
    files_dir: str = '/var/www/html'
    log_level: str = 'info'
    cors_origins: str = '*'
    operation_timeout_sec: float = Field(default=30.0, gt=0, le=600)
    idempotent_delete: bool = False
    upload_chunk_size: int = Field(default=1024 * 1024, ge=4096)


settings = Settings()
