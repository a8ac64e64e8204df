from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)


def _split_recipients(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    data_dir: Path = Path("data")
    resend_api_key: str | None = None
    email_from: str = "Prenotazioni Campo <onboarding@resend.dev>"
    notify_recipients: tuple[str, ...] = field(default_factory=tuple)
    notify_timeout: float = 10.0
    storage_lock_timeout: float = 5.0
    api_base_url: str = "http://127.0.0.1:5000"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            data_dir=Path(os.getenv("FIELD_BOOKING_DATA_DIR", "data")),
            resend_api_key=os.getenv("RESEND_API_KEY") or None,
            email_from=os.getenv("EMAIL_FROM_ADDRESS", cls.email_from),
            notify_recipients=_split_recipients(os.getenv("NOTIFY_RECIPIENTS")),
            notify_timeout=float(os.getenv("NOTIFY_TIMEOUT_SECONDS", "10")),
            storage_lock_timeout=float(os.getenv("STORAGE_LOCK_TIMEOUT_SECONDS", "5")),
            api_base_url=os.getenv("FIELD_BOOKING_API_URL", cls.api_base_url),
        )
