# pharmacity_collector/models/product_models.py

import enum
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Optional, Union

# Sentinel stored for any scalar field the product page did not provide.
NOT_FOUND = "Not found"


@dataclass
class SearchMetadata:
    """Where and how a product was discovered."""
    keyword: str
    sku: Optional[str] = None
    brand_code: Optional[str] = None
    brand_name: Optional[str] = None
    is_prescription_drug: Optional[bool] = None
    is_drug: Optional[bool] = None
    found_date: Optional[str] = None


@dataclass
class BoundingBox:
    """
    A YOLO-style label: normalized center plus width/height.
    Centers are clamped to [0, 1], sizes to [0.1, 1.0].
    """
    x_center: float = 0.5
    y_center: float = 0.5
    width: float = 0.8
    height: float = 0.8

    MIN_SIZE = 0.1
    MAX_SIZE = 1.0

    @classmethod
    def default(cls) -> "BoundingBox":
        return cls()

    @classmethod
    def clamped(cls, x_center: float, y_center: float, width: float, height: float) -> "BoundingBox":
        return cls(
            x_center=min(1.0, max(0.0, x_center)),
            y_center=min(1.0, max(0.0, y_center)),
            width=min(cls.MAX_SIZE, max(cls.MIN_SIZE, width)),
            height=min(cls.MAX_SIZE, max(cls.MIN_SIZE, height)),
        )

    def to_dict(self) -> Dict[str, float]:
        return {"x_center": self.x_center, "y_center": self.y_center, "width": self.width, "height": self.height}


@dataclass
class DrugInfo:
    drug_name: Optional[str] = None
    active_ingredient: Optional[str] = None
    dosage: Optional[str] = None
    confidence: int = 0

    @classmethod
    def unknown(cls) -> "DrugInfo":
        return cls()

    @classmethod
    def from_payload(cls, payload: Any) -> "DrugInfo":
        """Builds a DrugInfo from whatever the language model returned; anything unusable is 'unknown'."""
        if not isinstance(payload, dict):
            return cls.unknown()
        name = payload.get("drugName") or payload.get("drug_name")
        if not isinstance(name, str) or not name.strip():
            return cls.unknown()
        try:
            confidence = int(float(payload.get("confidence") or 0))
        except (TypeError, ValueError):
            confidence = 0
        return cls(
            drug_name=name.strip(),
            active_ingredient=_optional_str(payload.get("activeIngredient") or payload.get("active_ingredient")),
            dosage=_optional_str(payload.get("dosage")),
            confidence=min(100, max(0, confidence)),
        )


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass
class LocalizationResult:
    """What the localization engine concluded for one product image."""
    image_index: int
    url: str
    location: BoundingBox = field(default_factory=BoundingBox.default)
    drug_info: DrugInfo = field(default_factory=DrugInfo.unknown)
    success: bool = True
    error: Optional[str] = None
    ocr_error: Optional[str] = None
    ocr_processing_ms: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["location"] = self.location.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LocalizationResult":
        location = data.get("location") or {}
        drug = data.get("drug_info") or {}
        return cls(
            image_index=data.get("image_index", 0),
            url=data.get("url", ""),
            location=BoundingBox(**{k: location[k] for k in ("x_center", "y_center", "width", "height") if k in location}),
            drug_info=DrugInfo(**{f.name: drug[f.name] for f in fields(DrugInfo) if f.name in drug}),
            success=data.get("success", True),
            error=data.get("error"),
            ocr_error=data.get("ocr_error"),
            ocr_processing_ms=data.get("ocr_processing_ms"),
        )


@dataclass
class ProductRecord:
    """
    One scraped product. `slug` is the key across the whole run and on disk.
    Scalar fields hold NOT_FOUND when the page did not have them; list fields are empty.
    """
    slug: str
    name: str = NOT_FOUND
    price: str = NOT_FOUND
    sku: str = NOT_FOUND
    brand: str = NOT_FOUND
    description: str = NOT_FOUND
    ingredients: List[str] = field(default_factory=list)
    usage: List[str] = field(default_factory=list)
    usage_instructions: List[str] = field(default_factory=list)
    usage_method: str = NOT_FOUND
    side_effects: List[str] = field(default_factory=list)
    contraindications: List[str] = field(default_factory=list)
    precautions: List[str] = field(default_factory=list)
    images: List[str] = field(default_factory=list)
    search_metadata: Optional[SearchMetadata] = None
    chatbot_questions: List[str] = field(default_factory=list)
    ocr_locations: List[LocalizationResult] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["ocr_locations"] = [loc.to_dict() for loc in self.ocr_locations]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProductRecord":
        if not isinstance(data, dict):
            raise TypeError(f"Product data must be a JSON object, got {type(data).__name__}")
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        metadata = values.pop("search_metadata", None)
        locations = values.pop("ocr_locations", None) or []
        record = cls(**values)
        if isinstance(metadata, dict):
            meta_fields = {f.name for f in fields(SearchMetadata)}
            record.search_metadata = SearchMetadata(**{k: v for k, v in metadata.items() if k in meta_fields})
        record.ocr_locations = [LocalizationResult.from_dict(loc) for loc in locations if isinstance(loc, dict)]
        return record


@dataclass
class SearchItem:
    """A lightweight search hit. `raw` is the item as returned, minus image fields."""
    slug: str
    name: str
    sku: Optional[str] = None
    brand_code: Optional[str] = None
    brand_name: Optional[str] = None
    is_prescription_drug: Optional[bool] = None
    is_drug: Optional[bool] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_raw(cls, raw: Dict[str, Any]) -> "SearchItem":
        return cls(
            slug=str(raw.get("slug") or ""),
            name=str(raw.get("name") or ""),
            sku=raw.get("sku"),
            brand_code=raw.get("brand_code"),
            brand_name=raw.get("brand_name"),
            is_prescription_drug=raw.get("is_prescription_drug"),
            is_drug=raw.get("is_drug"),
            raw=raw,
        )


@dataclass
class SearchResultPage:
    """
    One keyword query's results. A failed request still has the empty shape
    (total=0, items=[]) but also carries `error`, so callers can tell it apart from "no results".
    """
    keyword: str
    total: int = 0
    items: List[SearchItem] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def to_dict(self) -> Dict[str, Any]:
        return {"total": self.total, "items": [item.raw for item in self.items]}


@dataclass
class Word:
    text: str
    left: float
    top: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.left + self.width

    @property
    def bottom(self) -> float:
        return self.top + self.height


@dataclass
class TextLine:
    words: List[Word] = field(default_factory=list)

    @property
    def text(self) -> str:
        return " ".join(word.text for word in self.words)

    @property
    def top(self) -> float:
        """Vertical position of the first word; lines without words sort first."""
        return self.words[0].top if self.words else 0


@dataclass
class OCRResult:
    text: str = ""
    lines: List[TextLine] = field(default_factory=list)
    exit_code: Optional[int] = None
    errored: bool = False
    error_message: Optional[str] = None
    processing_time_ms: Optional[float] = None
    image_width: Optional[int] = None
    image_height: Optional[int] = None

    @classmethod
    def failure(cls, message: str) -> "OCRResult":
        return cls(exit_code=-1, errored=True, error_message=message)


class ImageOutcome(enum.Enum):
    DOWNLOADED = "downloaded"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class ParsedPayload:
    value: Any
    ok: bool = True


@dataclass
class ParseFailure:
    reason: str
    raw: str = ""
    ok: bool = False


ParseResult = Union[ParsedPayload, ParseFailure]
