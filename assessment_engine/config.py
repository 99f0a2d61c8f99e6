"""
Configuration management using Pydantic Settings
"""
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""
    
    # Storage
    STORAGE_BACKEND: str = "sql"  # sql | redis | memory
    DATABASE_URL: str = "sqlite:///./assessment_engine.db"
    REDIS_URL: str = "redis://redis:6379/0"
    LOCK_TIMEOUT_SECONDS: int = 30
    
    # Gemini API
    GEMINI_API_KEY: str = ""
    GEMINI_MODEL: str = "gemini-2.5-flash"
    GENERATION_TIMEOUT_SECONDS: float = 45.0
    GENERATION_MAX_WORKERS: int = 4
    
    # Application
    APP_NAME: str = "Assessment Attempt Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:8000"]
    
    # Assessment defaults
    DEFAULT_OPTIONS_PER_QUESTION: int = 4
    MAX_ATTEMPTS_PER_ASSESSMENT: int = 1
    
    # Scoring floors (negative marks never push below these)
    SCORE_FLOOR_PER_QUESTION: float = 0.0
    SCORE_FLOOR_TOTAL: float = 0.0
    
    # Logging
    LOG_LEVEL: str = "INFO"
    
    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()
