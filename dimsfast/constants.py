"""Numerical defaults shared across dimsfast modules.

Values follow the MassSpecWavelet / xcms conventions for direct-infusion data
unless noted otherwise.
"""

import numpy as np

# =============================================================================
# Unit conversions
# =============================================================================

PPM = 1e-6  # parts per million

# =============================================================================
# Peak detection (MassSpecWavelet-style defaults)
# =============================================================================

DEFAULT_SCALES = (1.0, 2.0, 3.0, 4.0, 6.0, 8.0, 12.0, 16.0)
DEFAULT_SNR_THRESHOLD = 3.0
DEFAULT_NOISE_WINDOW = 500  # points
NOISE_QUANTILE = 0.95  # MassSpecWavelet SNR.method = "quantile"
MAD_SCALE = 1.4826  # MAD -> standard deviation for normal noise
DEFAULT_MIN_NOISE_LEVEL = 0.001  # fraction of max |coefficient|

# Ricker kernel is truncated at this many scales on either side of its centre
RICKER_TRUNCATE = 5.0

# Absolute floor so SNR never divides by zero
NOISE_EPSILON = 1e-12

# =============================================================================
# Calibration (xcms CalibrantMassParam defaults)
# =============================================================================

DEFAULT_CALIBRANT_ABS_TOLERANCE = 0.0001  # Da
DEFAULT_CALIBRANT_PPM_TOLERANCE = 5.0

# =============================================================================
# Correspondence (xcms MzClustParam defaults)
# =============================================================================

DEFAULT_MZCLUST_PPM = 20.0
DEFAULT_MZCLUST_ABS_MZ = 0.0
DEFAULT_MIN_FRACTION = 0.5

# =============================================================================
# Output
# =============================================================================

NA_STRING = "NA"
FLOAT_DTYPE = np.float64
