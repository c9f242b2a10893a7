# pharmacity_collector/config.py

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv

from .errors import ConfigError

logger = logging.getLogger(__name__)

# --- Core Settings ---
# The public storefront. Product pages live at f"{BASE_URL}{slug}.html".
BASE_URL = "https://www.pharmacity.vn/"
# The JSON gateway behind the storefront's search box.
API_BASE_URL = "https://api-gateway.pharmacity.vn"

# --- File Path Settings ---
# The path to the directory where this config.py file is located (the package).
PACKAGE_PATH = Path(__file__).parent
# All output is saved under 'data', one level above the package.
DATA_PATH = PACKAGE_PATH.parent / "data"
# Scratch space for images sent to OCR. Emptied at the start of every run.
TEMP_PATH = PACKAGE_PATH.parent / "temp"

# --- Browser/Network Settings ---
USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/108.0.0.0 Safari/537.36"
VIEWPORT = {"width": 1920, "height": 1080}
# Page navigation timeout in milliseconds.
REQUEST_TIMEOUT = 30000
# How long to wait for the product heading before extracting whatever is there.
HEADING_TIMEOUT = 5000
# Image download timeout in seconds.
IMAGE_TIMEOUT = 30.0

# --- OCR Settings ---
OCR_SPACE_URL = "https://api.ocr.space/parse/image"
# OCR.space's documented demo key. Fine for trying things out, not for real runs.
OCR_SPACE_PUBLIC_KEY = "helloworld"
# Engine 2 is the only OCR.space engine that accepts language="auto".
OCR_SPACE_ENGINE = 2
# --oem 3: default engine. --psm 11: sparse text, product photos are not text blocks.
TESSERACT_PRIMARY_CONFIG = r'--oem 3 --psm 11'

# --- Language Model Settings ---
GEMINI_MODEL = "gemini-2.0-flash"
PLACEHOLDER_KEYS = {"", "your_api_key_here", "PLACEHOLDER"}

# --- Collection Settings ---
SEED_KEYWORDS = [
    # Common symptoms
    'đau đầu', 'viêm họng', 'ho', 'sốt', 'cảm cúm', 'tiêu chảy', 'đau bụng', 'nhức mỏi',
    # Antibiotics and anti-inflammatories
    'kháng sinh', 'kháng viêm', 'giảm đau', 'hạ sốt', 'thuốc mỡ', 'viêm xoang', 'viêm phổi',
    # Cardiovascular
    'tim mạch', 'huyết áp cao', 'cholesterol', 'đau thắt ngực', 'nhịp tim', 'loãng máu',
    # Diabetes
    'tiểu đường', 'insulin', 'đường huyết', 'tiểu đường type 2',
    # Digestive
    'dạ dày', 'trào ngược', 'táo bón', 'đại tràng', 'viêm loét dạ dày', 'khó tiêu', 'men tiêu hóa',
    # Allergy and skin reactions
    'dị ứng', 'viêm mũi', 'ngứa', 'nổi mề đay', 'viêm da', 'chàm', 'mẩn đỏ',
    # Neurology
    'an thần', 'mất ngủ', 'đau nửa đầu', 'động kinh', 'parkinson', 'alzheimer', 'co giật',
    # Respiratory
    'hen suyễn', 'viêm phế quản', 'khó thở', 'tắc nghẽn phổi', 'COPD',
    # Vitamins and minerals
    'vitamin', 'vitamin C', 'vitamin D', 'vitamin E', 'khoáng chất', 'canxi', 'sắt', 'kẽm', 'magie',
    # Supplements
    'tăng cường miễn dịch', 'bổ gan', 'thuốc bổ', 'mệt mỏi', 'suy nhược', 'tăng cân', 'giảm cân',
    # Eyes
    'đau mắt', 'khô mắt', 'viêm kết mạc', 'thuốc nhỏ mắt', 'đục thủy tinh thể', 'glaucoma',
    # Dermatology
    'mụn trứng cá', 'nấm da', 'vẩy nến', 'hắc lào', 'lang ben', 'thuốc trị sẹo',
    # Specialist
    'ung thư', 'thuốc ức chế miễn dịch', 'viêm khớp', 'loãng xương', 'gout', 'thấp khớp',
    # Hormonal and urology
    'kinh nguyệt', 'tiền mãn kinh', 'rối loạn nội tiết', 'tiết niệu', 'tiền liệt tuyến', 'rối loạn cương',
    # Other
    'trĩ', 'giãn tĩnh mạch', 'suy tĩnh mạch', 'tai mũi họng', 'răng miệng', 'nha khoa'
]
KEYWORDS_PER_BATCH = 20
MAX_PRODUCTS_PER_KEYWORD = 50
MAX_CATEGORY_SAMPLES = 100

# --- Pacing (seconds) ---
DELAY_SECONDS = 1.0        # between products
LLM_DELAY_SECONDS = 3.0    # between language-model calls
OCR_DELAY_SECONDS = 5.0    # between images sent to OCR
IMAGE_DELAY_SECONDS = 0.3  # between image downloads

# --- Retry ---
LLM_MAX_RETRIES = 3
LLM_INITIAL_BACKOFF = 5.0

# --- Image Compression ---
COMPRESSION_ENABLED = True
# JPEG quality, 1-100. Lower compresses harder.
COMPRESSION_QUALITY = 70


@dataclass(frozen=True)
class CollectorConfig:
    """Everything one collection run needs. Built once and handed to each component."""
    gemini_api_key: str
    ocr_space_api_key: str = OCR_SPACE_PUBLIC_KEY
    gemini_model: str = GEMINI_MODEL
    output_dir: Path = DATA_PATH
    temp_dir: Path = TEMP_PATH
    seed_keywords: Tuple[str, ...] = field(default_factory=lambda: tuple(SEED_KEYWORDS))
    keywords_per_batch: int = KEYWORDS_PER_BATCH
    max_products_per_keyword: int = MAX_PRODUCTS_PER_KEYWORD
    max_category_samples: int = MAX_CATEGORY_SAMPLES
    delay_seconds: float = DELAY_SECONDS
    llm_delay_seconds: float = LLM_DELAY_SECONDS
    ocr_delay_seconds: float = OCR_DELAY_SECONDS
    image_delay_seconds: float = IMAGE_DELAY_SECONDS
    llm_max_retries: int = LLM_MAX_RETRIES
    llm_initial_backoff: float = LLM_INITIAL_BACKOFF
    compression_enabled: bool = COMPRESSION_ENABLED
    compression_quality: int = COMPRESSION_QUALITY
    ocr_backend: str = "ocrspace"
    use_llm_drug_analysis: bool = True
    use_actual_image_size: bool = False
    random_seed: Optional[int] = None

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None, **overrides) -> "CollectorConfig":
        """
        Loads credentials from the environment (and a .env file, if present).
        A missing Gemini key is fatal: nothing should run without it.
        """
        load_dotenv(dotenv_path=env_file)

        gemini_key = os.environ.get("GEMINI_API_KEY", "").strip()
        if gemini_key in PLACEHOLDER_KEYS:
            raise ConfigError("GEMINI_API_KEY is not set. Add it to your environment or .env file.")

        ocr_key = os.environ.get("OCR_SPACE_API_KEY", "").strip()
        if not ocr_key:
            logger.warning("OCR_SPACE_API_KEY not set, falling back to the public demo key (not for production use).")
            ocr_key = OCR_SPACE_PUBLIC_KEY

        config = cls(
            gemini_api_key=gemini_key,
            ocr_space_api_key=ocr_key,
            gemini_model=os.environ.get("GEMINI_MODEL", GEMINI_MODEL),
        )
        return config.with_overrides(**overrides)

    def with_overrides(self, **overrides) -> "CollectorConfig":
        """Returns a copy with the given fields replaced, ignoring None values."""
        values = {k: v for k, v in overrides.items() if v is not None}
        if "seed_keywords" in values:
            values["seed_keywords"] = tuple(values["seed_keywords"])
        if values.get("ocr_backend") not in (None, "ocrspace", "tesseract"):
            raise ConfigError(f"Unknown OCR backend: {values['ocr_backend']}")
        return replace(self, **values)

    @property
    def products_dir(self) -> Path:
        return self.output_dir / "products"
