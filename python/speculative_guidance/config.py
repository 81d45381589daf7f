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
"""Configuration for the speculative logits processor and its collaborators.

Environment variables:
    HF_TOKEN: Default bearer credential for remote tokenizer retrieval
    HF_ENDPOINT: Default base location for remote tokenizer retrieval
    LLGUIDANCE_LOG_LEVEL: Log level handed to the llguidance matcher

Explicit arguments always take precedence over the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

DEFAULT_SPECULATION_DEPTH = 5
DEFAULT_HUB_URL = "https://huggingface.co"
DEFAULT_LLGUIDANCE_LOG_LEVEL = 1


@dataclass(frozen=True)
class ProcessorConfig:
    """Configuration for SpeculativeLogitsProcessor.

    Attributes:
        speculation_depth: Number of top-ranked candidates checked one by one
            before falling back to a full vocabulary mask (default: 5)
        debug: Emit a trace line for each masking decision (default: False).
            Purely observational, never changes masking results.

    Example:
        >>> config = ProcessorConfig(speculation_depth=3, debug=True)
    """

    speculation_depth: int = DEFAULT_SPECULATION_DEPTH
    debug: bool = False

    def __post_init__(self) -> None:
        if isinstance(self.speculation_depth, bool) or not isinstance(
            self.speculation_depth, int
        ):
            raise ValueError(
                f"speculation_depth must be an integer, got {self.speculation_depth!r}"
            )
        if self.speculation_depth < 1:
            raise ValueError(
                f"speculation_depth must be >= 1, got {self.speculation_depth}"
            )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary (for logging and debugging)."""
        return {
            "speculation_depth": self.speculation_depth,
            "debug": self.debug,
        }


def resolve_hub_url(base_url: Optional[str] = None) -> str:
    """Resolve the tokenizer hub base URL: argument, then HF_ENDPOINT, then default."""
    url = base_url or os.environ.get("HF_ENDPOINT") or DEFAULT_HUB_URL
    return url.rstrip("/")


def resolve_hub_token(token: Optional[str] = None) -> Optional[str]:
    """Resolve the hub bearer credential: argument, then HF_TOKEN."""
    if token:
        return token
    return os.environ.get("HF_TOKEN") or None


def resolve_llguidance_log_level() -> int:
    """Read LLGUIDANCE_LOG_LEVEL, falling back to the default on bad values."""
    raw = os.environ.get("LLGUIDANCE_LOG_LEVEL")
    if raw is None:
        return DEFAULT_LLGUIDANCE_LOG_LEVEL
    try:
        return int(raw)
    except ValueError:
        return DEFAULT_LLGUIDANCE_LOG_LEVEL
