import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        database_url: str,
        local_storage_path: Optional[Path],
        session_secret: str,
        session_max_age_secs: int,
        demo_write_delay_secs: float,
        currency_code: str,
        currency_symbol: str,
        genai_api_key: Optional[str],
        genai_model: str,
        genai_temperature: float,
        genai_timeout_secs: float,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.local_storage_path = local_storage_path
        self.session_secret = session_secret
        self.session_max_age_secs = session_max_age_secs
        self.demo_write_delay_secs = demo_write_delay_secs
        self.currency_code = currency_code
        self.currency_symbol = currency_symbol
        self.genai_api_key = genai_api_key
        self.genai_model = genai_model
        self.genai_temperature = genai_temperature
        self.genai_timeout_secs = genai_timeout_secs
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    local_storage_path = Path(
        os.getenv("FINANCE_LOCAL_STORAGE", str(data_dir / "local_storage.json"))
    )
    session_secret = os.getenv(
        "FINANCE_SESSION_SECRET",
        "5f1c0b8e2d4a47a39e6b7c1d0f2e3a4b8c9d0e1f2a3b4c5d6e7f8091a2b3c4d5",
    )
    session_max_age_secs = int(
        os.getenv("FINANCE_SESSION_MAX_AGE_SECS", str(14 * 24 * 3600))
    )
    demo_write_delay_secs = float(os.getenv("FINANCE_DEMO_WRITE_DELAY_SECS", "0.5"))
    currency_code = os.getenv("FINANCE_CURRENCY_CODE", "INR")
    currency_symbol = os.getenv("FINANCE_CURRENCY_SYMBOL", "₹")
    genai_api_key = os.getenv("FINANCE_GENAI_API_KEY") or None
    genai_model = os.getenv("FINANCE_GENAI_MODEL", "gemini-2.5-flash")
    genai_temperature = float(os.getenv("FINANCE_GENAI_TEMPERATURE", "0.7"))
    genai_timeout_secs = float(os.getenv("FINANCE_GENAI_TIMEOUT_SECS", "30"))
    log_level = os.getenv("FINANCE_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        local_storage_path=local_storage_path,
        session_secret=session_secret,
        session_max_age_secs=session_max_age_secs,
        demo_write_delay_secs=demo_write_delay_secs,
        currency_code=currency_code,
        currency_symbol=currency_symbol,
        genai_api_key=genai_api_key,
        genai_model=genai_model,
        genai_temperature=genai_temperature,
        genai_timeout_secs=genai_timeout_secs,
        log_level=log_level,
    )
