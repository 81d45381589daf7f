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
"""Pytest configuration for speculative guidance tests.

Sets up the import path so tests run from a source checkout, and provides a
fake oracle backend with a controllable set of valid tokens so the matcher
and processor can be tested without llguidance.
"""

import json
import sys
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

import pytest
import torch

# Add the python/ directory so speculative_guidance imports without installation
python_dir = Path(__file__).resolve().parents[2]
if str(python_dir) not in sys.path:
    sys.path.insert(0, str(python_dir))

from speculative_guidance.tokenizer.bridge import AddedToken, TokenizerData  # noqa: E402


class FakeOracleSession:
    """Oracle session with a fixed set of valid tokens.

    Records every call so tests can assert on the query order.
    """

    def __init__(
        self,
        vocab_size: int,
        allowed: Optional[Iterable[int]] = None,
        complete: bool = False,
        reject: Optional[Callable[[Dict], bool]] = None,
    ):
        self._vocab_size = vocab_size
        self.allowed = set(range(vocab_size)) if allowed is None else set(allowed)
        self.complete = complete
        self.reject = reject
        self.checks: List[int] = []
        self.advanced: List[int] = []
        self.resets: List[str] = []
        self.mask_calls = 0

    @property
    def vocab_size(self) -> int:
        return self._vocab_size

    def is_token_allowed(self, token_id: int) -> bool:
        self.checks.append(token_id)
        return token_id in self.allowed

    def get_token_mask(self) -> torch.Tensor:
        self.mask_calls += 1
        mask = torch.zeros(self._vocab_size, dtype=torch.uint8)
        for token_id in self.allowed:
            mask[token_id] = 1
        return mask

    def advance(self, token_id: int) -> None:
        self.advanced.append(token_id)

    def is_complete(self) -> bool:
        return self.complete

    def reset(self, grammar_json: str) -> None:
        if grammar_json and self.reject is not None and self.reject(json.loads(grammar_json)):
            raise ValueError("grammar rejected")
        self.resets.append(grammar_json)
        self.advanced = []


class FakeOracleBackend:
    """Oracle backend producing FakeOracleSession instances."""

    def __init__(
        self,
        allowed: Optional[Iterable[int]] = None,
        complete: bool = False,
        reject: Optional[Callable[[Dict], bool]] = None,
    ):
        self.allowed = allowed
        self.complete = complete
        self.reject = reject
        self.started = False
        self.init_calls: List[tuple] = []
        self.session: Optional[FakeOracleSession] = None

    async def start(self) -> None:
        self.started = True

    def init(self, grammar_json: str, tokenizer_json: str) -> FakeOracleSession:
        if not self.started:
            raise RuntimeError("backend not started")
        self.init_calls.append((grammar_json, tokenizer_json))

        tokenizer = json.loads(tokenizer_json)
        ids = list(tokenizer["vocab"].values()) + [t["id"] for t in tokenizer["added_tokens"]]
        if not ids:
            raise ValueError("empty vocabulary")
        if self.reject is not None and self.reject(json.loads(grammar_json)):
            raise ValueError("grammar rejected")

        self.session = FakeOracleSession(
            max(ids) + 1,
            allowed=self.allowed,
            complete=self.complete,
            reject=self.reject,
        )
        return self.session


@pytest.fixture
def fake_backend_factory():
    """Factory for fake oracle backends."""
    return FakeOracleBackend


@pytest.fixture
def fake_backend():
    """Fake oracle backend accepting every token."""
    return FakeOracleBackend()


@pytest.fixture
def small_tokenizer() -> TokenizerData:
    """Three-token BPE tokenizer with one special token."""
    return TokenizerData(
        vocab={"hello": 0, "world": 1, "!": 2},
        merges=(("h", "e"), ("l", "l"), ("o", "w")),
        added_tokens=(AddedToken(id=3, content="</s>", special=True, normalized=False),),
        model_type="bpe",
    )


@pytest.fixture
def digit_tokenizer() -> TokenizerData:
    """100-token vocabulary: "t0" .. "t99"."""
    return TokenizerData(vocab={f"t{i}": i for i in range(100)})
