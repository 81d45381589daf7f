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
"""GrammarMatcher: synchronous state machine over one oracle session.

States:
    UNINITIALIZED -> READY -> (READY <-> READY via advance) -> READY | COMPLETE

reset() returns from any reachable state to READY, against the original
grammar or a newly supplied one. Every operation on an UNINITIALIZED matcher
raises NotInitializedError.

The matcher is the sole owner of its session. One matcher serves one
generation session at a time; its operations are not reentrant.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

import torch

from ..errors import GuidanceError, NotInitializedError, OracleInitError
from ..grammars.definition import Grammar, serialize_grammar
from ..tokenizer.bridge import TokenizerData
from .oracle import OracleBackend, OracleSession

logger = logging.getLogger(__name__)


class MatcherState(Enum):
    """Lifecycle state of a GrammarMatcher."""

    UNINITIALIZED = "uninitialized"
    READY = "ready"
    COMPLETE = "complete"


class GrammarMatcher:
    """Grammar oracle adapter.

    Use the async create() classmethod to build a ready matcher; a matcher
    constructed directly stays UNINITIALIZED.

    Example:
        >>> matcher = await GrammarMatcher.create(regex(r"[0-9]+"), tokenizer_data)
        >>> matcher.is_token_allowed(15)
        True
    """

    def __init__(self) -> None:
        self._session: Optional[OracleSession] = None
        self._grammar: Optional[Grammar] = None
        self._original_grammar: Optional[Grammar] = None
        self._tokenizer: Optional[TokenizerData] = None

    @classmethod
    async def create(
        cls,
        grammar: Grammar,
        tokenizer: TokenizerData,
        backend: Optional[OracleBackend] = None,
    ) -> "GrammarMatcher":
        """Create a matcher with one live oracle session.

        Args:
            grammar: Grammar definition to enforce
            tokenizer: Canonical tokenizer data
            backend: Oracle backend (default: LLGuidanceBackend)

        Returns:
            A READY GrammarMatcher

        Raises:
            OracleInitError: If the oracle rejects the grammar or tokenizer
        """
        if backend is None:
            from .llguidance_backend import LLGuidanceBackend

            backend = LLGuidanceBackend()

        matcher = cls()
        await matcher._initialize(grammar, tokenizer, backend)
        return matcher

    async def _initialize(
        self,
        grammar: Grammar,
        tokenizer: TokenizerData,
        backend: OracleBackend,
    ) -> None:
        await backend.start()

        try:
            grammar_json = serialize_grammar(grammar)
            tokenizer_json = tokenizer.to_json()
            session = backend.init(grammar_json, tokenizer_json)
        except OracleInitError:
            raise
        except (GuidanceError, TypeError, ValueError, RuntimeError) as e:
            raise OracleInitError(f"Oracle rejected grammar or tokenizer: {e}") from e

        self._session = session
        self._grammar = grammar
        self._original_grammar = grammar
        self._tokenizer = tokenizer
        logger.debug(
            f"GrammarMatcher ready: grammar={type(grammar).__name__}, "
            f"vocab_size={session.vocab_size}"
        )

    def _ensure_initialized(self) -> OracleSession:
        if self._session is None:
            raise NotInitializedError(
                "GrammarMatcher not initialized. Use GrammarMatcher.create() to create an instance."
            )
        return self._session

    @property
    def state(self) -> MatcherState:
        if self._session is None:
            return MatcherState.UNINITIALIZED
        if self._session.is_complete():
            return MatcherState.COMPLETE
        return MatcherState.READY

    @property
    def grammar(self) -> Optional[Grammar]:
        """Grammar currently enforced (the original one unless reset replaced it)."""
        return self._grammar

    @property
    def vocab_size(self) -> int:
        return self._ensure_initialized().vocab_size

    def is_token_allowed(self, token_id: int) -> bool:
        """Check whether token_id is a valid continuation (fast path)."""
        session = self._ensure_initialized()
        if token_id < 0 or token_id >= session.vocab_size:
            return False
        return bool(session.is_token_allowed(token_id))

    def get_token_mask(self) -> torch.Tensor:
        """Full uint8 mask over the vocabulary, 1 = allowed (slow path)."""
        return self._ensure_initialized().get_token_mask()

    def advance(self, token_id: int) -> None:
        """Commit token_id to the parse.

        The token is not re-validated: callers must only advance with a token
        that was allowed at the time of the call.
        """
        self._ensure_initialized().advance(token_id)

    def is_complete(self) -> bool:
        """True if generation may legally terminate here."""
        return bool(self._ensure_initialized().is_complete())

    def reset(self, grammar: Optional[Grammar] = None) -> None:
        """Discard parse progress, optionally switching to a new grammar.

        Without a grammar the matcher restarts on the grammar it was created
        with, even if an earlier reset switched to another one.

        A rejected grammar still discards parse progress: the matcher stays
        on its current grammar, restarted from the beginning.

        Raises:
            OracleInitError: If the oracle rejects the new grammar
        """
        session = self._ensure_initialized()
        if grammar is None:
            if self._grammar is self._original_grammar:
                session.reset("")
                return
            grammar = self._original_grammar

        try:
            session.reset(serialize_grammar(grammar))
        except (GuidanceError, TypeError, ValueError, RuntimeError) as e:
            self._restart_current(session)
            if isinstance(e, OracleInitError):
                raise
            raise OracleInitError(f"Oracle rejected grammar on reset: {e}") from e
        self._grammar = grammar

    def _restart_current(self, session: OracleSession) -> None:
        if self._grammar is self._original_grammar:
            session.reset("")
        else:
            session.reset(serialize_grammar(self._grammar))
