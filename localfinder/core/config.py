# localfinder/core/config.py
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# .env lives in the repository root, next to the package
ENV_FILE = Path(__file__).resolve().parents[2] / ".env"
load_dotenv(ENV_FILE, override=False)

DEFAULT_CONTACT_USER_AGENT = "LocalFinder/1.0 (https://zasupport.com; admin@zasupport.com)"
DEFAULT_OVERPASS_ENDPOINTS = (
    "https://overpass-api.de/api/interpreter,"
    "https://lz4.overpass-api.de/api/interpreter"
)


class Settings(BaseSettings):
    # ---- App ----
    APP_VERSION: str = "1.0.0"
    LOG_LEVEL: str = "INFO"
    HOST: str = "127.0.0.1"
    PORT: int = 8000
    CORS_ALLOW_ORIGINS: str = "http://localhost:3000,http://127.0.0.1:3000"

    # ---- Upstream etiquette ----
    # Overpass and Nominatim usage policies require an identifying UA with contact info.
    CONTACT_USER_AGENT: str = DEFAULT_CONTACT_USER_AGENT

    # ---- Overpass ----
    OVERPASS_ENDPOINTS: str = DEFAULT_OVERPASS_ENDPOINTS
    OVERPASS_TIMEOUT_S: float = 25.0
    OVERPASS_CACHE_TTL_S: float = 300.0

    # ---- Nominatim ----
    NOMINATIM_BASE_URL: str = "https://nominatim.openstreetmap.org/search"
    NOMINATIM_TIMEOUT_S: float = 10.0
    NOMINATIM_MIN_DELAY_S: float = 1.0
    GEOCODE_CACHE_TTL_S: float = 600.0
    AREA_COUNTRY_CODES: Optional[str] = None

    # ---- Search orchestration ----
    SEARCH_DEBOUNCE_S: float = 0.3
    SEARCH_MIN_LOADING_S: float = 0.25
    SEARCH_CACHE_TTL_S: float = 120.0
    SEARCH_SWR_GAP_S: float = 30.0
    SEARCH_RECENT_WINDOW_S: float = 5.0
    SEARCH_CACHE_MAX_ENTRIES: Optional[int] = 512

    # ---- Radius escalation ----
    QUERY_MIN_RADIUS_M: int = 6000
    WIDEN_THRESHOLD: int = 5
    WIDEN_FACTOR: int = 2
    WIDEN_MAX_RADIUS_M: int = 12000

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("SEARCH_DEBOUNCE_S", mode="before")
    @classmethod
    def _clamp_debounce(cls, value: object) -> float:
        # Debounce window stays within 250-350 ms.
        try:
            numeric = float(value) if value is not None else 0.3
        except (TypeError, ValueError):
            numeric = 0.3
        return min(0.35, max(0.25, numeric))

    @field_validator("SEARCH_CACHE_MAX_ENTRIES", mode="before")
    @classmethod
    def _empty_means_unbounded(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("SEARCH_CACHE_MAX_ENTRIES")
    @classmethod
    def _non_positive_means_unbounded(cls, value: Optional[int]) -> Optional[int]:
        # 0 disables the LRU bound instead of producing an unusable cache
        if value is not None and value < 1:
            return None
        return value

    def overpass_endpoints(self) -> List[str]:
        return [url.strip() for url in self.OVERPASS_ENDPOINTS.split(",") if url.strip()]

    def cors_origins(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ALLOW_ORIGINS.split(",") if origin.strip()]

    def area_country_codes(self) -> Optional[str]:
        codes = (self.AREA_COUNTRY_CODES or "").strip()
        return codes or None


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings, loaded once."""
    return Settings()


def require_contact_user_agent(settings: Optional[Settings] = None) -> str:
    """
    Startup check: Overpass and Nominatim refuse anonymous clients.
    """
    ua = (settings or get_settings()).CONTACT_USER_AGENT.strip()
    if not ua:
        raise RuntimeError(
            "CONTACT_USER_AGENT is empty. Set an identifying User-Agent with contact details "
            f"in the environment or in {ENV_FILE}."
        )
    return ua
