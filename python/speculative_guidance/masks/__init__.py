# Copyright Rand Arete @ Ananke 2025
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================
"""Token mask computation for grammar-constrained logits.

This module provides:
- SpeculativeLogitsProcessor: top-k speculative checks with full-mask fallback
- SpeculationStats: hit/miss counters for speculative masking
- create_processor: async factory building a processor over a new matcher
"""

from __future__ import annotations

from .speculative import (
    SpeculationStats,
    SpeculativeLogitsProcessor,
    apply_token_mask,
    create_processor,
    mask_all_except,
    rank_candidates,
)

__all__ = [
    "SpeculationStats",
    "SpeculativeLogitsProcessor",
    "apply_token_mask",
    "create_processor",
    "mask_all_except",
    "rank_candidates",
]
