"""Configuration management for ImageHive.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the IMAGEHIVE_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (IMAGEHIVE_* prefix)
2. .env file in the project root
3. Default values defined in ImageHiveConfig

Example .env file:
    IMAGEHIVE_BACKEND_HOST=http://127.0.0.1:8000
    IMAGEHIVE_BACKEND_MODEL=Qwen2.5-VL-3B-Instruct
    IMAGEHIVE_ALLOW_OFFLINE=true
    IMAGEHIVE_DATA_DIR=data

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
This ensures a single source of truth for all configuration values across
the application.

Usage Example
-------------
    from imagehive.core.config import config

    print(config.backend_host)
    print(config.data_dir)

Runtime Overrides
-----------------
The backend host, backend model and image API key can also be changed at
runtime through ``POST /api/settings``.  Those values live in the settings
record (see :mod:`imagehive.core.storage`) and take precedence over the
environment defaults defined here.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ImageHiveConfig(BaseSettings):
    """Main configuration for ImageHive.

    Attributes
    ----------
    Inference Backend:
        backend_host : str
            Base URL of the OpenAI-compatible inference server
        backend_model : str
            Model identifier requested on chat calls and matched by the prober
        temperature : float
            Sampling temperature sent with every chat call
        chat_timeout : float
            Read timeout in seconds for chat calls

    Startup Handshake:
        probe_timeout : float
            Bound in seconds on a single readiness probe
        startup_timeout : float
            Overall bound in seconds on the startup polling loop
        startup_interval : float
            Fixed delay in seconds between two startup probes
        allow_offline : bool
            Start the server even when the backend never became ready
        verify_chat : bool
            Issue one chat round-trip once the backend reports ready

    Image Generation:
        fal_api_key : str
            Default API key for the image API (settings record overrides it)
        fal_base_url : str
            Base URL of the image API
        fal_model : str
            Model path appended to ``fal_base_url``

    Paths:
        data_dir : Path
            Holds ``settings.json`` and ``gallery.json``
        static_dir : Path
            Optional web assets served under ``/static``

    Server:
        server_host : str
            Bind address
        server_port : int
            Bind port (1024-65535)
        log_level : str
            Root logging level used by the entry points

    Examples
    --------
        >>> custom_config = ImageHiveConfig(
        ...     backend_host="http://gpu-box:8000",
        ...     allow_offline=True,
        ... )
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="IMAGEHIVE_",
        case_sensitive=False,
    )

    # Inference backend
    backend_host: str = Field(
        default="http://127.0.0.1:8000",
        description="Base URL of the OpenAI-compatible inference backend",
    )
    backend_model: str = Field(
        default="Qwen2.5-VL-3B-Instruct",
        description="Model identifier served by the backend",
    )
    temperature: float = Field(default=0.4, ge=0.0, le=2.0)
    chat_timeout: float = Field(
        default=120.0,
        description="Read timeout for chat calls (seconds)",
        gt=0,
    )

    # Startup handshake
    probe_timeout: float = Field(
        default=2.0,
        description="Timeout for a single readiness probe (seconds)",
        gt=0,
    )
    startup_timeout: float = Field(
        default=300.0,
        description="Overall bound on the startup polling loop (seconds)",
        gt=0,
    )
    startup_interval: float = Field(
        default=1.5,
        description="Delay between startup probes (seconds)",
        gt=0,
    )
    allow_offline: bool = Field(
        default=False,
        description="Start the server even if the backend is not ready",
    )
    verify_chat: bool = Field(
        default=True,
        description="Send one chat round-trip once the backend is ready",
    )

    # Image generation
    fal_api_key: str = Field(
        default="",
        description="Default image API key (overridden by the settings record)",
    )
    fal_base_url: str = Field(default="https://fal.run")
    fal_model: str = Field(default="fal-ai/bytedance/seedream/v4.5/text-to-image")

    # Paths
    data_dir: Path = Field(
        default=Path("data"),
        description="Directory for settings.json and gallery.json",
    )
    static_dir: Path = Field(
        default=Path("static"),
        description="Directory for optional web assets",
    )

    # Server settings
    server_host: str = Field(
        default="0.0.0.0",
        description="Server bind address (0.0.0.0 for local network)",
    )
    server_port: int = Field(
        default=3000,
        description="Server port",
        ge=1024,
        le=65535,
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")

    def __init__(self, **kwargs):
        """Initialize configuration and create the data directory.

        Args:
            **kwargs: Configuration overrides (typically from environment variables)
        """
        super().__init__(**kwargs)

        # The static directory is optional, only the data directory is created.
        self.data_dir.mkdir(parents=True, exist_ok=True)

    @property
    def settings_path(self) -> Path:
        """Path to the persisted settings record."""
        return self.data_dir / "settings.json"

    @property
    def gallery_path(self) -> Path:
        """Path to the persisted gallery list."""
        return self.data_dir / "gallery.json"


# Global configuration instance
# Loads values from environment variables (IMAGEHIVE_* prefix) and .env file.
config = ImageHiveConfig()
