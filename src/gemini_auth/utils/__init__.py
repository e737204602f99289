# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from .resilient_io import safe_write_json
from .single_flight import SingleFlight

__all__ = ["safe_write_json", "SingleFlight"]
