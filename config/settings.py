from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

from checker.errors import ConfigurationError
from checker.tools.checklist import ChecklistLocation


PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
DEFAULT_ENV_FILE = os.path.join(PROJECT_ROOT, ".env")
LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


def _optional(name: str) -> Optional[str]:
    value = os.getenv(name, "").strip()
    return value or None


@dataclass(frozen=True)
class Settings:
    """Application settings loaded from environment variables.

    Built once at process entry and handed to the request handler; nothing
    below the app layer reads the environment directly.
    """

    app_env: str = "development"
    log_level: str = "INFO"

    checklist_bucket: str = ""
    checklist_blob: str = ""
    checklist_credentials_file: Optional[str] = None
    checklist_project: Optional[str] = None
    checklist_encoding: str = "utf-8"

    google_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.0-flash"
    temperature: float = 0.3
    top_p: float = 0.9

    prompt_variant: str = "ja"
    preamble_template_file: Optional[str] = None
    assistant_history: str = "drop"
    participant_id: str = "security-checker"

    @classmethod
    def from_env(cls) -> "Settings":
        try:
            temperature = float(os.getenv("MODEL_TEMPERATURE", "0.3"))
            top_p = float(os.getenv("MODEL_TOP_P", "0.9"))
        except ValueError as exc:
            raise ConfigurationError(f"Invalid model sampling setting: {exc}") from exc

        log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper()
        if log_level not in LOG_LEVELS:
            raise ConfigurationError(
                f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}",
                details={"value": log_level},
            )

        assistant_history = os.getenv("HISTORY_ASSISTANT_TURNS", "drop").strip().lower()
        if assistant_history not in ("drop", "include"):
            raise ConfigurationError(
                "HISTORY_ASSISTANT_TURNS must be 'drop' or 'include'",
                details={"value": assistant_history},
            )

        return cls(
            app_env=os.getenv("APP_ENV", "development"),
            log_level=log_level,
            checklist_bucket=os.getenv("CHECKLIST_BUCKET_NAME", "").strip(),
            checklist_blob=os.getenv("CHECKLIST_BLOB_NAME", "").strip(),
            checklist_credentials_file=_optional("CHECKLIST_STORAGE_CREDENTIALS"),
            checklist_project=_optional("CHECKLIST_STORAGE_PROJECT"),
            checklist_encoding=os.getenv("CHECKLIST_ENCODING", "utf-8"),
            google_api_key=_optional("GOOGLE_API_KEY"),
            gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.0-flash"),
            temperature=temperature,
            top_p=top_p,
            prompt_variant=os.getenv("PROMPT_VARIANT", "ja").strip(),
            preamble_template_file=_optional("PREAMBLE_TEMPLATE_FILE"),
            assistant_history=assistant_history,
            participant_id=os.getenv("CHAT_PARTICIPANT_ID", "security-checker").strip(),
        )

    @property
    def is_development(self) -> bool:
        return self.app_env.lower() in {"dev", "development", "local"}

    def checklist_location(self) -> ChecklistLocation:
        missing = [
            name
            for name, value in (
                ("CHECKLIST_BUCKET_NAME", self.checklist_bucket),
                ("CHECKLIST_BLOB_NAME", self.checklist_blob),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(
                f"Checklist storage is not configured: missing {', '.join(missing)}",
                details={"missing": missing},
            )
        return ChecklistLocation(
            bucket=self.checklist_bucket,
            blob=self.checklist_blob,
            credentials_file=self.checklist_credentials_file,
            project=self.checklist_project,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    load_dotenv(os.getenv("SECURITY_CHECKER_ENV_FILE", DEFAULT_ENV_FILE))
    return Settings.from_env()
