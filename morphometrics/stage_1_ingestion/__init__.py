from morphometrics.stage_1_ingestion.data_loaders import (
    PENGUIN_SCHEMA,
    load_penguins,
    normalise_labels,
    validate_penguins,
)

__all__ = ["PENGUIN_SCHEMA", "load_penguins", "normalise_labels", "validate_penguins"]
