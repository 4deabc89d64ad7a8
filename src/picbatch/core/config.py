"""Configuration management for Picbatch.

This module provides centralized configuration management using Pydantic Settings.
All configuration is loaded from environment variables with the PICBATCH_ prefix,
allowing easy customization without code changes.

Environment Variable Loading
-----------------------------
Configuration values are loaded in the following priority order:
1. Environment variables (PICBATCH_* prefix)
2. .env file in the project root
3. Default values defined in PicbatchConfig

Example .env file:
    PICBATCH_UPLOADS_DIR=public/uploads
    PICBATCH_RECENT_WINDOW=50
    PICBATCH_EMPTY_TAG_POLICY=drop
    PICBATCH_DELETE_REPLACED_BLOBS=true

Global Configuration Instance
------------------------------
A global `config` instance is created automatically at module import time.
This ensures a single source of truth for all configuration values across
the application.

Usage Example
-------------
    from picbatch.core.config import config

    print(config.uploads_dir)
    print(config.recent_window)

Consistency Settings
--------------------
The defaults reproduce the behaviour of the first deployment of this service:

- empty tags produced by a trailing comma are stored verbatim
- the previous image of a picture is left on disk when it is replaced
- deleting a single picture leaves its image on disk

Orphaned images created by these settings are removed by the reconciliation
sweep (see ``picbatch.core.reconcile``).
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PicbatchConfig(BaseSettings):
    """Main configuration for Picbatch.

    Values are loaded from environment variables with the PICBATCH_ prefix,
    with fallback to defaults defined here.

    Attributes
    ----------
    Paths:
        data_dir : Path
            Directory holding the SQLite database
        uploads_dir : Path
            Directory holding finalized and staged image files
        uploads_url_prefix : str
            URL prefix stored in ``image_url`` and used to mount the uploads
        database_name : str
            SQLite file name inside ``data_dir``

    Sampling:
        recent_window : int
            Number of most recently added pictures considered "fresh"
        default_batch_limit : int
            Batch size used when the client does not pass one
        max_batch_limit : int
            Upper bound applied to client supplied batch sizes

    Consistency:
        empty_tag_policy : Literal["keep", "drop", "reject"]
            What to do with empty entries in a comma-separated tag list
        delete_replaced_blobs : bool
            Delete a picture's previous image after a replace is committed
        delete_picture_blobs : bool
            Delete a picture's image when the picture is deleted
        orphan_grace_seconds : int
            Minimum age of an unreferenced image before the sweep removes it

    Server:
        server_host : str
            Bind address for uvicorn
        server_port : int
            Bind port for uvicorn
        log_level : str
            Root logging level
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="PICBATCH_",
        case_sensitive=False,
    )

    # Paths
    data_dir: Path = Field(
        default=Path("data"),
        description="Directory holding the SQLite database",
    )
    uploads_dir: Path = Field(
        default=Path("public/uploads"),
        description="Directory holding uploaded image files",
    )
    uploads_url_prefix: str = Field(
        default="/uploads",
        description="URL prefix for finalized image files",
    )
    database_name: str = Field(
        default="picbatch.db",
        description="SQLite database file name inside data_dir",
    )

    # Sampling
    recent_window: int = Field(
        default=50,
        description="Count of most recently added pictures treated as fresh",
        ge=1,
    )
    default_batch_limit: int = Field(default=10, ge=1)
    max_batch_limit: int = Field(default=100, ge=1)

    # Consistency
    empty_tag_policy: Literal["keep", "drop", "reject"] = Field(
        default="keep",
        description="Handling of empty tags produced by stray commas",
    )
    delete_replaced_blobs: bool = Field(
        default=False,
        description="Delete the previous image once a replacement is committed",
    )
    delete_picture_blobs: bool = Field(
        default=False,
        description="Delete the image file when a single picture is deleted",
    )
    orphan_grace_seconds: int = Field(
        default=3600,
        description="Minimum age before an unreferenced image may be swept",
        ge=0,
    )

    # Server
    server_host: str = Field(default="0.0.0.0")
    server_port: int = Field(default=3000, ge=1, le=65535)
    log_level: str = Field(default="INFO")

    def __init__(self, **kwargs):
        """Initialize configuration and create required directories.

        Args:
            **kwargs: Configuration overrides (typically from environment variables)
        """
        super().__init__(**kwargs)

        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.uploads_dir.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        """Absolute location of the SQLite database file."""
        return self.data_dir / self.database_name


# Global configuration instance
# Loads values from environment variables (PICBATCH_* prefix) and .env file.
config = PicbatchConfig()
