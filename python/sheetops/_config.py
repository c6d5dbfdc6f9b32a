"""Configuration for sheetops.

Defaults come from ``SHEETOPS_*`` environment variables (a ``.env`` file is
honoured).  Pass a ``Settings`` instance explicitly to override per call.
"""

import os
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Settings(BaseModel):
    """Runtime settings."""

    # Range sampling used by the circular-reference guard
    sample_max_cells: int = Field(default=int(os.getenv("SHEETOPS_SAMPLE_MAX_CELLS", "100")), ge=1)
    edge_sample_step: int = Field(default=int(os.getenv("SHEETOPS_EDGE_SAMPLE_STEP", "10")), ge=1)

    # Applier limits
    max_fill_cells: int = int(os.getenv("SHEETOPS_MAX_FILL_CELLS", "10000"))
    default_row_count: int = int(os.getenv("SHEETOPS_DEFAULT_ROW_COUNT", "1000"))
    default_col_count: int = int(os.getenv("SHEETOPS_DEFAULT_COL_COUNT", "26"))
    max_sheets: int = int(os.getenv("SHEETOPS_MAX_SHEETS", "10"))
    max_sheet_name_length: int = int(os.getenv("SHEETOPS_MAX_SHEET_NAME_LENGTH", "31"))

    # Recompute / guard behaviour after a batch
    recompute_mode: Literal["sync", "deferred"] = os.getenv("SHEETOPS_RECOMPUTE_MODE", "sync")  # type: ignore[assignment]
    check_circular: bool = _env_bool("SHEETOPS_CHECK_CIRCULAR", "true")
    analysis_warn_ms: float = float(os.getenv("SHEETOPS_ANALYSIS_WARN_MS", "1000"))

    # Bundled engine: hand unsupported functions to the `formulas` library
    use_formulas_fallback: bool = _env_bool("SHEETOPS_USE_FORMULAS_FALLBACK", "true")


settings = Settings()
