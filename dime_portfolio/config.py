from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Tuple

from .errors import ConfigurationError

# ===============================
# CONFIG & CONSTANTS
# ===============================
@dataclass(frozen=True)
class AppDefaults:
    FUND_SYMBOLS: Tuple[str, ...] = ("IVV", "VOO", "QQQ")
    CHART_FUND_ORDER: Tuple[str, ...] = ("IVV", "QQQ", "VOO")  # legend order
    HISTORY_LIMIT: int = 20
    CURRENCY_SYMBOL: str = "฿"
    DISPLAY_TZ: str = "Asia/Bangkok"
    POLL_SECONDS: float = 2.0
    CALL_TIMEOUT_SECONDS: float = 30.0
    REALTIME_CHANNEL: str = "txns-realtime"

DEFAULTS = AppDefaults()

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


@dataclass(frozen=True)
class Settings:
    supabase_url: str
    supabase_key: str
    redirect_url: Optional[str] = None
    log_level: str = "INFO"


def load_settings(secrets: Optional[Mapping[str, str]] = None,
                  environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Resolve backend settings: Streamlit secrets first, then the environment.

    The anon key is used on purpose; row-level security applies to the
    signed-in user, so a service-role key must never reach the page.
    """
    secrets = secrets or {}
    if environ is None:
        _load_dotenv()
        environ = os.environ

    def pick(name: str) -> Optional[str]:
        value = secrets.get(name) or environ.get(name)
        return str(value).strip() if value else None

    url = pick("SUPABASE_URL")
    key = pick("SUPABASE_ANON_KEY")
    if not url or not key:
        raise ConfigurationError("Supabase is not configured: set SUPABASE_URL and SUPABASE_ANON_KEY.")
    return Settings(
        supabase_url=url,
        supabase_key=key,
        redirect_url=pick("SUPABASE_REDIRECT_URL"),
        log_level=(pick("LOG_LEVEL") or "INFO").upper(),
    )


def _load_dotenv() -> None:
    from dotenv import load_dotenv

    load_dotenv(Path.cwd() / ".env", override=False)


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=LOG_FORMAT)
    else:
        root.setLevel(level)
    # the HTTP and websocket clients are chatty at INFO
    for noisy in ("httpx", "hpack", "websockets"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
