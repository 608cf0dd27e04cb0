"""Forward price estimates from a chronological price series.

Importing this package does not load TensorFlow; only
:mod:`pricecast.model`, :mod:`pricecast.predictor` and :mod:`pricecast.train`
do.
"""

import os

# Silence most TensorFlow C++ logs (info/warning); must happen before TF loads.
os.environ.setdefault("TF_CPP_MIN_LOG_LEVEL", "2")
