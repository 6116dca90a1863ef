from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Tuple

BASE_DIR = Path(__file__).resolve().parent

DEFAULT_UNCERTAINTY_PATTERN = (
    r"không biết|không rõ|không chắc"
    r"|để (?:mình|em|shop|tớ)(?: \w+)? hỏi"
    r"|chờ (?:mình|em|shop|tớ)(?: \w+)? kiểm tra"
    r"|check r rep"
)


@dataclass(frozen=True)
class ConfidencePolicy:
    """Tunable knobs of the reply confidence heuristic."""
    base: float = 0.8
    min_length: int = 10
    max_length: int = 500
    short_penalty: float = 0.2
    long_penalty: float = 0.1
    uncertainty_penalty: float = 0.2
    uncertainty_pattern: str = DEFAULT_UNCERTAINTY_PATTERN


@dataclass(frozen=True)
class PromptLimits:
    """Caps applied to each prompt section."""
    max_examples: int = 10
    max_products: int = 20
    max_history: int = 5


@dataclass(frozen=True)
class ShopProfile:
    """Static shop facts injected into the prompt."""
    name: str = "MIXER"
    category: str = "Quần áo thời trang"
    shipping: str = "2-4 ngày tùy khu vực"
    payment: str = "COD hoặc chuyển khoản"
    opening_hours: str = "8h-22h hàng ngày"


@dataclass(frozen=True)
class Settings:
    """Configuration container for models, credentials, storage, and policy knobs."""
    gemini_api_keys: Tuple[str, ...]
    gemini_model: str
    generation_timeout_sec: float
    generation_retries: int
    retry_initial_delay_sec: float
    prompts_dir: Path
    data_dir: Path
    products_path: Path
    fb_page_access_token: str
    fb_page_id: str
    fb_verify_token: str
    fb_api_version: str
    viettelpost_username: str
    viettelpost_password: str
    confidence: ConfidencePolicy = field(default_factory=ConfidencePolicy)
    prompt_limits: PromptLimits = field(default_factory=PromptLimits)
    shop: ShopProfile = field(default_factory=ShopProfile)
    include_glossary: bool = True


def parse_api_keys(raw: str) -> Tuple[str, ...]:
    """Split a comma separated key list, dropping blanks and duplicates but keeping order."""
    keys = []
    for part in (raw or "").split(","):
        cleaned = part.strip()
        if cleaned and cleaned not in keys:
            keys.append(cleaned)
    return tuple(keys)


def load_settings() -> Settings:
    """Purpose: Load configuration from environment variables and defaults.
    Inputs/Outputs: No inputs; returns a Settings instance.
    Side Effects / State: Reads environment variables and filesystem paths.
    Dependencies: Uses os.getenv and BASE_DIR for default paths.
    Failure Modes: Non-numeric values for numeric knobs raise ValueError.
    Testing Notes: Verify defaults and overrides via environment variables.
    """
    # Resolve storage paths first; every store lives under data_dir by default.
    data_dir = Path(os.getenv("DATA_DIR") or (BASE_DIR / "data")).resolve()
    products_path = os.getenv("PRODUCTS_PATH")
    products_file = Path(products_path) if products_path else data_dir / "products.json"

    api_keys = parse_api_keys(os.getenv("GEMINI_API_KEYS", ""))
    if not api_keys:
        api_keys = parse_api_keys(os.getenv("GEMINI_API_KEY", ""))

    confidence = ConfidencePolicy(
        base=float(os.getenv("CONFIDENCE_BASE", "0.8")),
        min_length=int(os.getenv("CONFIDENCE_MIN_LENGTH", "10")),
        max_length=int(os.getenv("CONFIDENCE_MAX_LENGTH", "500")),
        short_penalty=float(os.getenv("CONFIDENCE_SHORT_PENALTY", "0.2")),
        long_penalty=float(os.getenv("CONFIDENCE_LONG_PENALTY", "0.1")),
        uncertainty_penalty=float(os.getenv("CONFIDENCE_UNCERTAINTY_PENALTY", "0.2")),
        uncertainty_pattern=os.getenv("CONFIDENCE_UNCERTAINTY_PATTERN") or DEFAULT_UNCERTAINTY_PATTERN,
    )
    limits = PromptLimits(
        max_examples=int(os.getenv("PROMPT_MAX_EXAMPLES", "10")),
        max_products=int(os.getenv("PROMPT_MAX_PRODUCTS", "20")),
        max_history=int(os.getenv("PROMPT_MAX_HISTORY", "5")),
    )

    return Settings(
        gemini_api_keys=api_keys,
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.0-flash"),
        generation_timeout_sec=float(os.getenv("GENERATION_TIMEOUT_SEC", "30")),
        generation_retries=int(os.getenv("GENERATION_RETRIES", "0")),
        retry_initial_delay_sec=float(os.getenv("RETRY_INITIAL_DELAY_SEC", "1.0")),
        prompts_dir=(BASE_DIR / "prompts").resolve(),
        data_dir=data_dir,
        products_path=products_file,
        fb_page_access_token=os.getenv("FB_PAGE_ACCESS_TOKEN", ""),
        fb_page_id=os.getenv("FB_PAGE_ID", ""),
        fb_verify_token=os.getenv("FB_VERIFY_TOKEN", ""),
        fb_api_version=os.getenv("FB_API_VERSION", "v18.0"),
        viettelpost_username=os.getenv("VIETTELPOST_USERNAME", ""),
        viettelpost_password=os.getenv("VIETTELPOST_PASSWORD", ""),
        confidence=confidence,
        prompt_limits=limits,
        shop=ShopProfile(name=os.getenv("SHOP_NAME", "MIXER")),
        include_glossary=os.getenv("PROMPT_GLOSSARY", "1") != "0",
    )
