from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env")

    APP_NAME: str = "BRANCHSTOCK"
    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    DATABASE_URL: str = "sqlite+pysqlite:///./branchstock.db"
    DEFAULT_TENANT_NAME: str = "Default Tenant"
    DEFAULT_STORE_NAME: str = "Default Store"
    SUPERADMIN_USERNAME: str = "superadmin"
    SUPERADMIN_EMAIL: str = "superadmin@example.com"
    SUPERADMIN_PASSWORD: str = "change-me"
    TRANSFER_CODE_PREFIX: str = "TRF"
    TRANSFER_CODE_DIGITS: int = 6
    TRANSFER_LIST_MAX_ROWS: int = 500
    OPS_ENABLE_INTEGRITY_SCAN: bool = True
    METRICS_ENABLED: bool = True


settings = Settings()
