import json
from pathlib import Path
from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode

# Get the directory where this config file is located.
_BACKEND_DIR = Path(__file__).parent.resolve()


def _detect_project_root(backend_dir: Path) -> Path:
    """Resolve project root from the backend directory in the repo layout."""
    return backend_dir.parent.resolve()


_PROJECT_ROOT = _detect_project_root(_BACKEND_DIR)


def _clean_url(value: object) -> object:
    """Trim accidental quotes/whitespace from URL env vars."""
    if value is None:
        return value
    text = str(value).strip().strip('"').strip("'")
    if not text:
        return text
    # Keep scheme://host normalization simple and deterministic.
    return text.rstrip("/")


# Public mainnet endpoints that are safe to rotate between. A caller-supplied
# RPC URL never joins this pool.
DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"
PUBLIC_FALLBACK_RPC_URLS = [
    "https://solana-rpc.publicnode.com",
    "https://rpc.ankr.com/solana",
]


class Settings(BaseSettings):
    # RPC Endpoints
    SOLANA_RPC_URL: str = DEFAULT_RPC_URL
    RPC_FALLBACK_URLS: Annotated[list[str], NoDecode] = list(PUBLIC_FALLBACK_RPC_URLS)
    RPC_TIMEOUT_SECONDS: float = 30.0  # Hard ceiling per JSON-RPC call

    # Retry / Backoff
    RPC_MAX_RETRIES: int = 5  # 500ms, 1s, 2s, 4s, 8s
    RPC_BACKOFF_BASE_SECONDS: float = 0.5
    RPC_BACKOFF_MAX_SECONDS: float = 30.0
    RPC_BACKOFF_JITTER: bool = False

    # Client-side rate limiting (per endpoint host)
    RPC_RATE_LIMIT_REQUESTS: int = 100
    RPC_RATE_LIMIT_WINDOW_SECONDS: float = 10.0

    # Pagination
    SIGNATURE_PAGE_SIZE: int = 1000  # getSignaturesForAddress maximum
    PAGE_REQUEST_DELAY_SECONDS: float = 0.1

    # Concurrency caps. Raising these is the fastest way to get rate-limited
    # by public providers.
    WALLET_CONCURRENCY: int = 3
    DETAIL_CONCURRENCY: int = 5

    # Batch limits
    MAX_WALLETS_PER_BATCH: int = 25
    MAX_TRANSACTIONS_LIMIT: int = 500
    DEFAULT_MAX_TRANSACTIONS: int = 100

    # SOL/USD price source
    SOL_PRICE_URL: str = (
        "https://api.coingecko.com/api/v3/simple/price?ids=solana&vs_currencies=usd"
    )
    SOL_PRICE_TTL_SECONDS: float = 60.0
    SOL_PRICE_TIMEOUT_SECONDS: float = 10.0
    SOL_PRICE_WAIT_SECONDS: float = 2.0  # Grace a finished batch gives the price lookup

    # Production Settings
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True
    CORS_ORIGINS: list[str] = ["*"]

    @field_validator("SOLANA_RPC_URL", "SOL_PRICE_URL", mode="before")
    @classmethod
    def _normalize_url_field(cls, value: object) -> object:
        return _clean_url(value)

    @field_validator("RPC_FALLBACK_URLS", mode="before")
    @classmethod
    def _normalize_url_list(cls, value: object) -> object:
        """Accept a comma-separated string as well as a JSON list."""
        if isinstance(value, str):
            text = value.strip()
            if text.startswith("["):
                value = json.loads(text)
            else:
                value = text.split(",")
        if isinstance(value, (list, tuple)):
            return [url for url in (_clean_url(item) for item in value) if url]
        return value

    @field_validator(
        "WALLET_CONCURRENCY",
        "DETAIL_CONCURRENCY",
        "MAX_WALLETS_PER_BATCH",
        "MAX_TRANSACTIONS_LIMIT",
        "SIGNATURE_PAGE_SIZE",
        "RPC_RATE_LIMIT_REQUESTS",
    )
    @classmethod
    def _require_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    class Config:
        # Load project-root .env first (common workflow), then backend/.env
        # as an override if present.
        env_file = (
            str(_PROJECT_ROOT / ".env"),
            str(_BACKEND_DIR / ".env"),
        )
        env_file_encoding = "utf-8"


settings = Settings()
