# pharmacity_collector/pipeline/enrichment.py
import logging
from typing import Dict, List, Optional, Sequence

from ..delegates.llm_delegate import extract_json
from ..errors import CollaboratorError
from ..models import DrugInfo, ProductRecord

logger = logging.getLogger(__name__)

KEYWORDS_PROMPT = """
In Vietnam, I'm collecting data about medications from Pharmacity.
{seed_line}
Generate {count} Vietnamese search keywords related to different medical conditions, symptoms, or medication types that people might search for at a pharmacy.

Return only a JSON array of strings without any other text.
Example format: ["keyword1", "keyword2", "keyword3"]

Make sure to include a diverse range of medical conditions, common health issues, and medication categories.
"""

CATEGORIES_PROMPT = """
I have collected descriptions of different medications from a pharmacy.
Based on these descriptions, categorize them into logical drug categories.

Descriptions:
{descriptions}

Return a JSON object where keys are category names and values are arrays of indices
corresponding to the order of the descriptions I provided.
Example format:
{{
  "Pain Relief": [0, 3, 5],
  "Antibiotics": [1, 6],
  "Cold & Flu": [2, 4]
}}
"""

QUESTIONS_PROMPT = """
I have information about a medication:

Name (Tên): {name}
Description (Mô tả): {description}
Ingredients (Thành phần): {ingredients}
Usage (Công dụng): {usage}
Side Effects (Tác dụng phụ): {side_effects}

Generate 10 potential questions that patients might ask about this medication for chatbot training.
Generate 5 questions in Vietnamese and 5 questions in English.

Return only a JSON array of strings without any other text.
Example format: ["Question 1?", "Question 2?", "Question 3?"]
"""

DRUG_NAME_PROMPT = """
Dựa vào văn bản được trích xuất từ ảnh sản phẩm dược phẩm dưới đây, hãy xác định tên của loại thuốc.
Nếu có thể, hãy cung cấp:
1. Tên thuốc/sản phẩm dược phẩm (bắt buộc)
2. Thành phần hoạt chất chính và liều lượng (nếu có)
3. Mức độ tin cậy về việc xác định đúng tên thuốc (0-100%)

Đây là văn bản OCR từ ảnh:
"{ocr_text}"

Trả về kết quả dưới định dạng JSON có cấu trúc như sau:
{{
  "drugName": "Tên thuốc/sản phẩm",
  "activeIngredient": "Thành phần hoạt chất chính",
  "dosage": "Liều lượng",
  "confidence": <0-100>
}}

Hãy chỉ trả về JSON, không có văn bản phụ trước hoặc sau.
"""


def _joined(values: Sequence[str]) -> str:
    return ", ".join(values) if values else "N/A"


def merge_keywords(seed: Sequence[str], generated: Sequence[str]) -> List[str]:
    """Seed first, then new keywords, each exact string once."""
    return list(dict.fromkeys([*seed, *generated]))


async def expand_keywords(llm, seed: Sequence[str], count: int = 20) -> List[str]:
    """Asks the model for `count` more search keywords not already in `seed`. Returns [] on any failure."""
    seed_line = f"I already have these keywords: {', '.join(seed)}\n" if seed else ""
    prompt = KEYWORDS_PROMPT.format(seed_line=seed_line, count=count)
    try:
        response = await llm.generate(prompt)
    except CollaboratorError as e:
        logger.error("Error generating keywords: %s", e)
        return []

    result = extract_json(response, "array")
    if not result.ok:
        logger.error("Failed to parse keywords from model response: %s", result.reason)
        return []
    known = set(seed)
    keywords = [str(k).strip() for k in result.value if isinstance(k, (str, int, float)) and str(k).strip()]
    return [k for k in dict.fromkeys(keywords) if k not in known]


async def categorize(llm, descriptions: Sequence[str]) -> Dict[str, List[int]]:
    """Groups descriptions into categories as {category: [indices]}. Returns {} on any failure."""
    if not descriptions:
        return {}
    prompt = CATEGORIES_PROMPT.format(descriptions="\n\n".join(descriptions))
    try:
        response = await llm.generate(prompt)
    except CollaboratorError as e:
        logger.error("Error generating categories: %s", e)
        return {}

    result = extract_json(response, "object")
    if not result.ok:
        logger.error("Failed to parse categories from model response: %s", result.reason)
        return {}

    categories: Dict[str, List[int]] = {}
    for name, indices in result.value.items():
        if not isinstance(indices, list):
            continue
        valid = [i for i in indices if isinstance(i, int) and not isinstance(i, bool) and 0 <= i < len(descriptions)]
        categories[str(name)] = valid
    return categories


async def generate_questions(llm, product: ProductRecord) -> List[str]:
    """Asks for chatbot training questions about one product. Returns [] on any failure."""
    prompt = QUESTIONS_PROMPT.format(
        name=product.name,
        description=product.description or "N/A",
        ingredients=_joined(product.ingredients),
        usage=_joined(product.usage),
        side_effects=_joined(product.side_effects),
    )
    try:
        response = await llm.generate(prompt)
    except CollaboratorError as e:
        logger.error("Error generating chatbot questions for %s: %s", product.slug, e)
        return []

    result = extract_json(response, "array")
    if not result.ok:
        logger.error("Failed to parse questions for %s: %s", product.slug, result.reason)
        return []
    return [str(q).strip() for q in result.value if isinstance(q, str) and q.strip()]


async def analyze_drug_name(llm, ocr_text: Optional[str]) -> DrugInfo:
    """Asks the model which drug the OCR text names. Unknown on empty text or any failure."""
    if not ocr_text or not ocr_text.strip():
        logger.info("No OCR text to analyze")
        return DrugInfo.unknown()

    try:
        response = await llm.generate(DRUG_NAME_PROMPT.format(ocr_text=ocr_text))
    except CollaboratorError as e:
        logger.error("Language model error while analyzing OCR text: %s", e)
        return DrugInfo.unknown()

    result = extract_json(response, "object")
    if not result.ok:
        logger.error("Error parsing drug analysis: %s", result.reason)
        logger.debug("Raw response: %s", response)
        return DrugInfo.unknown()

    info = DrugInfo.from_payload(result.value)
    logger.info("Identified drug: %s (confidence: %d%%)", info.drug_name or "Unknown", info.confidence)
    return info
