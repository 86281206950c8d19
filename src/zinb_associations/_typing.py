"""Shared type aliases for the zinb_associations package."""

import numpy as np
import pandas as pd

# Per-sample vectors (library sizes, subject IDs) accepted by the public API.
VectorLike = np.ndarray | pd.Series | list
