from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration with env overrides.

    Values are read from the environment and from a `.env` file.
    """

    # Database
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "hitech_homes"

    # HTTP
    cors_origins: List[str] = ["http://localhost:3000", "http://localhost:3001"]
    port: int = 8000
    log_level: str = "INFO"

    # Text generation
    openai_api_key: str = Field(default="", description="API key for the chat completions endpoint")
    openai_model: str = "gpt-4o-mini"
    openai_base_url: str = "https://api.openai.com/v1"
    openai_max_tokens: int = 800
    openai_temperature: float = 0.7
    openai_timeout: int = 30

    # Media host
    cloudinary_cloud_name: str = ""
    cloudinary_api_key: str = ""
    cloudinary_api_secret: str = ""
    cloudinary_folder: str = "properties"

    # Company details used by the chat assistant
    company_name: str = "Hi-Tech Homes"
    company_phone: str = "+91 98765 43210"
    company_email: str = "info@hitechhomes.com"
    company_location: str = "Mumbai, India"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
