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
"""Grammar oracle boundary and the adapter that drives it.

This module provides:
- OracleBackend / OracleSession: capability interface of the oracle
- GrammarMatcher: state machine owning one oracle session
- LLGuidanceBackend: default oracle built on llguidance (imported lazily)
"""

from __future__ import annotations

from .matcher import GrammarMatcher, MatcherState
from .oracle import OracleBackend, OracleSession


def __getattr__(name: str):
    """Lazy import of the llguidance backend."""
    if name in ("LLGuidanceBackend", "LLGuidanceSession"):
        from . import llguidance_backend

        return getattr(llguidance_backend, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "GrammarMatcher",
    "LLGuidanceBackend",
    "LLGuidanceSession",
    "MatcherState",
    "OracleBackend",
    "OracleSession",
]
