"""Configuration management for the MA landscape pipeline"""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Pipeline settings, read from the environment (or a .env file)"""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",  # Ignore extra fields in environment
    )

    # Run selection
    target_years: str = Field(default="2025")

    # Sources
    cms_landscape_url: Optional[str] = Field(default=None)
    gazetteer_base_url: str = Field(
        default="https://www2.census.gov/geo/docs/maps-data/data/gazetteer/2020_Gazetteer"
    )
    gazetteer_file_template: str = Field(default="2020_gaz_counties_{state_fips}.txt")
    zcta_county_url: str = Field(
        default="https://www2.census.gov/geo/docs/maps-data/data/rel2020/zcta520/tab20_zcta520_county20_natl.txt"
    )

    # Search provider
    serpapi_key: Optional[str] = Field(default=None)
    serpapi_url: str = Field(default="https://serpapi.com/search.json")
    search_result_count: int = Field(default=20)
    sb_discovery_concurrency: int = Field(default=2)

    # Benefit extraction
    benefits_concurrency: int = Field(default=4)
    pdf_max_pages: int = Field(default=40)
    pdf_max_bytes: int = Field(default=10 * 1024 * 1024)  # 10MB
    pdf_min_bytes: int = Field(default=1000)

    # HTTP
    http_timeout_seconds: float = Field(default=30.0)
    download_max_retries: int = Field(default=3)
    user_agent: str = Field(default="MyNutritionAdvisorBot/1.0 (+support@mynutritionadvisor.ai)")

    # Storage
    dist_dir: str = Field(default="./dist")
    data_dir: str = Field(default="./data")
    cache_dir: str = Field(default="./data/cache")

    # Logging Configuration
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")

    def get_target_years(self) -> List[int]:
        """Parse comma-separated target years, ignoring blanks and junk"""
        years = []
        for part in self.target_years.split(","):
            part = part.strip()
            if part.isdigit():
                years.append(int(part))
        return years

    @property
    def discovery_enabled(self) -> bool:
        return bool(self.serpapi_key and self.serpapi_key.strip())


# Global settings instance
settings = Settings()
