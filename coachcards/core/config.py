from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    DATABASE_URL: str = "postgresql://coach:coach@db:5432/coachcards"
    APP_ENV: str = "development"
    SECRET_KEY: str = "changeme-secret-key"

    # Comma-separated allowed origins, or "*" to allow all.
    # Example: "https://myapp.com,https://api.myapp.com"
    CORS_ORIGINS: str = "*"

    LOG_LEVEL: str = "INFO"
    LOG_FILE: str | None = None

    # Single namespaced key holding the cooldown JSON array in app_state.
    INSIGHTS_COOLDOWN_KEY: str = "insightsEngine.cooldowns"

    # Seconds a card must stay visible before it counts as "seen".
    INSIGHTS_IMPRESSION_THRESHOLD_SECONDS: float = 2.0

    EVENT_BATCH_MAX_ITEMS: int = 500

    @property
    def cors_origins_list(self) -> list[str]:
        if self.CORS_ORIGINS.strip() == "*":
            return ["*"]
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


settings = Settings()
