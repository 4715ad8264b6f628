"""Configuration management using Pydantic settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Pipeline settings loaded from environment variables (GEODATA_*)."""

    model_config = SettingsConfigDict(
        env_prefix="GEODATA_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # z-index = base + position in the registry
    z_index_base: int = 100

    # Downsampling (degrees / point counts)
    downsample_tolerance: float = 0.005
    downsample_max_run: int = 10
    downsample_min_run: int = 50       # runs shorter than this are never reduced
    downsample_min_total: int = 10000  # collections smaller than this are skipped

    # Codes with a transform to WGS84 registered at startup
    registered_crs: list[str] = [
        "EPSG:3857",
        "EPSG:3112",
        "EPSG:3577",
        "EPSG:28354",
        "EPSG:28355",
        "EPSG:28356",
        "EPSG:4269",
    ]
    # Codes normalized to another code before lookup (GDA94 is displayed as WGS84)
    crs_aliases: dict[str, str] = {
        "EPSG:4283": "EPSG:4326",
        "EPSG:900913": "EPSG:3857",
    }

    # CORS proxy
    always_use_proxy: bool = False
    proxy_url: str = "/proxy/"

    # Remote format conversion (used by the UI when a format is unhandled)
    conversion_service_url: str = "http://geospace.research.nicta.com.au/convert"
    max_conversion_size: int = 1_000_000

    # Fetching
    fetch_timeout: float = 30.0

    # Join colouring
    join_color_alpha: float = 0.5


settings = Settings()
