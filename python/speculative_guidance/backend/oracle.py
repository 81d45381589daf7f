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
"""Capability interface of the grammar-matching oracle.

The oracle is an opaque component: it receives the serialized grammar and
tokenizer, builds one session, and answers validity questions against the
session's live automaton state. Only GrammarMatcher talks to a session.

Sessions are not reentrant. Nothing here is safe to call concurrently on the
same session.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import torch


@runtime_checkable
class OracleSession(Protocol):
    """One live automaton state."""

    @property
    def vocab_size(self) -> int:
        """Vocabulary size the session was built with."""
        ...

    def is_token_allowed(self, token_id: int) -> bool:
        """Single-token membership query. Does not change state."""
        ...

    def get_token_mask(self) -> torch.Tensor:
        """uint8 tensor of length vocab_size, 1 = valid continuation."""
        ...

    def advance(self, token_id: int) -> None:
        """Commit token_id to the parse."""
        ...

    def is_complete(self) -> bool:
        """True if the current state is accepting."""
        ...

    def reset(self, grammar_json: str) -> None:
        """Restart the parse. An empty string keeps the original grammar."""
        ...


@runtime_checkable
class OracleBackend(Protocol):
    """Factory for oracle sessions."""

    async def start(self) -> None:
        """Wait for the underlying component to finish its own startup."""
        ...

    def init(self, grammar_json: str, tokenizer_json: str) -> OracleSession:
        """Build a session. Raises on a rejected grammar or tokenizer."""
        ...
