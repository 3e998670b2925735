"""Online Retail RFM: cleaning and customer segmentation on PySpark."""

__version__ = "1.0.0"

from retail_rfm.config import PipelineParams
from retail_rfm.cleaner import CleanResult, clean_transactions, validate_unique_keys
from retail_rfm.datatypes import enforce_datatypes, prepare_raw
from retail_rfm.exceptions import (
    RetailPipelineError,
    ConversionError,
    DuplicateKeyError,
    EmptyInputError,
)
from retail_rfm.segmenter import segment_customers, segment_label

__all__ = [
    "PipelineParams",
    "CleanResult",
    "clean_transactions",
    "validate_unique_keys",
    "enforce_datatypes",
    "prepare_raw",
    "RetailPipelineError",
    "ConversionError",
    "DuplicateKeyError",
    "EmptyInputError",
    "segment_customers",
    "segment_label",
]
