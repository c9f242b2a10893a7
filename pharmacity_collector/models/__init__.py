# pharmacity_collector/models/__init__.py

# Makes the model classes directly available from the 'models' package.
# Instead of: from pharmacity_collector.models.product_models import ProductRecord
# We can now use: from pharmacity_collector.models import ProductRecord

from .product_models import (
    NOT_FOUND,
    BoundingBox,
    DrugInfo,
    ImageOutcome,
    LocalizationResult,
    OCRResult,
    ParsedPayload,
    ParseFailure,
    ParseResult,
    ProductRecord,
    SearchItem,
    SearchMetadata,
    SearchResultPage,
    TextLine,
    Word,
)
