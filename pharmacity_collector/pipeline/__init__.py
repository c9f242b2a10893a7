# pharmacity_collector/pipeline/__init__.py

# This file makes the step functions directly available from the 'pipeline' package.
from .steps import (
    Collaborators,
    CollectionRun,
    run_collection,
    step_1_expand_keywords,
    step_2_collect_products,
    step_3_categorize_products,
    step_4_write_dataset,
)
from .localization import LocalizationEngine
