from typing import List
from pydantic_settings import BaseSettings
from dotenv import load_dotenv
load_dotenv()

class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./gradebook.db"
    SECRET_KEY: str = "secret"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    TIMEZONE: str = "Africa/Nairobi"
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # Grading
    PASS_MARK: float = 50.0
    DEFAULT_COURSEWORK_WEIGHT: float = 30.0
    DEFAULT_EXAM_WEIGHT: float = 70.0

    # Workflow
    REVIEWER_ROLES: str = "principal,admin"
    AUDIT_WRITE_RETRIES: int = 2

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True

    @property
    def cors_origins(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def reviewer_roles(self) -> List[str]:
        return [r.strip().lower() for r in self.REVIEWER_ROLES.split(",") if r.strip()]

settings = Settings()
