from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    state_db_path: str = "/app/data/state.db"
    sites_base_path: str = "/app/data/sites"

    host: str = "0.0.0.0"
    port: int = 5000
    cors_origins: list[str] = ["http://localhost:3000"]
    log_level: str = "INFO"

    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = 60

    openai_api_key: str = ""
    openai_url: str = "https://api.openai.com/v1/chat/completions"
    openai_model: str = "gpt-4o"
    openai_temperature: float = 0.7
    openai_timeout: float = 30.0
    llm_max_retries: int = 3
    llm_retry_delay: float = 20.0

    github_pat: str = ""
    github_api_url: str = "https://api.github.com"
    # 預期的帳號擁有者，不一致時只發出警告
    github_owner: str = ""

    vercel_token: str = ""
    vercel_api_url: str = "https://api.vercel.com"
    vercel_team_id: str | None = None

    readiness_initial_delay: float = 1.0
    readiness_max_delay: float = 10.0
    readiness_timeout: float = 120.0

    scheduler_poll_seconds: float = 1.0
    cleanup_max_attempts: int = 5
    cleanup_retry_seconds: float = 60.0

    def project_dir(self, project_name: str) -> Path:
        """專案在本機的網站目錄。"""
        return Path(self.sites_base_path) / project_name

    model_config = {"env_prefix": "", "case_sensitive": False, "env_file": ".env", "extra": "ignore"}


settings = Settings()
