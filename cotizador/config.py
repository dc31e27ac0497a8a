from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "local"
    app_host: str = "0.0.0.0"
    app_port: int = 8080
    log_level: str = "INFO"

    database_url: str = "postgresql://cotizador:cotizador@db:5432/cotizador"
    db_pool_min: int = 1
    db_pool_max: int = 10
    ensure_order_id_index: bool = False

    # Comma-separated; the first entry is the default schema
    allowed_schemas: str = "public"
    allowed_origin: str = "*"

    # Constants written by the order path
    tax_rate: int = 19
    default_user_id: int = 1
    item_detail: str = "COLECCION WOO"
    reference_prefix: str = "COT. PARA"
    reference_max_length: int = 60

    @property
    def schema_list(self) -> List[str]:
        schemas = [s.strip() for s in self.allowed_schemas.split(",") if s.strip()]
        return schemas or ["public"]

    @property
    def default_schema(self) -> str:
        return self.schema_list[0]

    @property
    def origin_list(self) -> List[str]:
        return [o.strip() for o in self.allowed_origin.split(",") if o.strip()] or ["*"]


settings = Settings()
