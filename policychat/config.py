"""
config.py
-----------
Typed configuration loader for environment variables, pathing, and constants.
This centralizes settings so other modules can import a single authoritative source.
"""
from __future__ import annotations
import logging
import os
from pathlib import Path
from pydantic import BaseModel, Field
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


class Settings(BaseModel):
    openai_api_key: str = Field(default_factory=lambda: os.getenv("OPENAI_API_KEY", ""))
    assistant_id: str = Field(default_factory=lambda: os.getenv("OPENAI_ASSISTANT_ID", ""))
    google_api_key: str = Field(default_factory=lambda: os.getenv("GOOGLE_API_KEY", ""))
    google_cse_id: str = Field(default_factory=lambda: os.getenv("GOOGLE_CSE_ID", ""))
    search_results: int = Field(default_factory=lambda: int(os.getenv("SEARCH_RESULTS", "5")))
    poll_interval: float = Field(default_factory=lambda: float(os.getenv("POLL_INTERVAL_SECONDS", "1.0")))
    # 0 disables the deadline
    run_timeout: float = Field(default_factory=lambda: float(os.getenv("RUN_TIMEOUT_SECONDS", "300")))
    priming_search: bool = Field(default_factory=lambda: _env_bool("PRIMING_SEARCH"))
    file_name_cache_path: str = Field(default_factory=lambda: os.getenv("FILE_NAME_CACHE_PATH", ""))
    citation_workers: int = Field(default_factory=lambda: int(os.getenv("CITATION_WORKERS", "4")))
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    def ensure_dirs(self) -> None:
        if self.file_name_cache_path:
            Path(self.file_name_cache_path).parent.mkdir(parents=True, exist_ok=True)


def setup_logging(level: str | int = "INFO") -> logging.Logger:
    """
    Configure the root logger once with a console handler.
    Modules log through `logging.getLogger(__name__)` and inherit this setup.
    """
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(
            level=level if isinstance(level, int) else level.upper(),
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    return logging.getLogger("policychat")


settings = Settings()
settings.ensure_dirs()
