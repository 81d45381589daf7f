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
"""End-to-end tests: tokenizer -> grammar -> matcher -> processor.

Uses the fake oracle backend from conftest, so the whole pipeline runs
without llguidance or network access.
"""

from __future__ import annotations

import asyncio
import math

import httpx
import torch

from speculative_guidance import (
    GrammarMatcher,
    ProcessorConfig,
    create_processor,
    extract_tokenizer_data,
    json_schema,
    load_tokenizer_data,
    regex,
)


class ScriptedBackend:
    """Backend whose valid set follows a fixed token script.

    At position n only script[n] is valid; the grammar completes once the
    whole script has been consumed.
    """

    def __init__(self, script):
        self.script = list(script)

    async def start(self) -> None:
        pass

    def init(self, grammar_json: str, tokenizer_json: str) -> "ScriptedSession":
        return ScriptedSession(self.script, vocab_size=100)


class ScriptedSession:
    def __init__(self, script, vocab_size: int):
        self.script = script
        self._vocab_size = vocab_size
        self.position = 0
        self.mask_calls = 0

    @property
    def vocab_size(self) -> int:
        return self._vocab_size

    def _expected(self):
        if self.position < len(self.script):
            return self.script[self.position]
        return None

    def is_token_allowed(self, token_id: int) -> bool:
        return token_id == self._expected()

    def get_token_mask(self) -> torch.Tensor:
        self.mask_calls += 1
        mask = torch.zeros(self._vocab_size, dtype=torch.uint8)
        if self._expected() is not None:
            mask[self._expected()] = 1
        return mask

    def advance(self, token_id: int) -> None:
        self.position += 1

    def is_complete(self) -> bool:
        return self.position >= len(self.script)

    def reset(self, grammar_json: str) -> None:
        self.position = 0


def greedy(logits: torch.Tensor) -> int:
    return int(torch.argmax(logits).item())


class TestExamples:
    """The canonical masking and tokenizer examples."""

    def test_tokenizer_examples(self) -> None:
        bpe = extract_tokenizer_data(
            {"model": {"vocab": {"hello": 0, "world": 1, "!": 2}, "merges": ["h e", "l l", "o w"]}}
        )
        plain = extract_tokenizer_data({"model": {"vocab": {"hello": 0, "world": 1, "!": 2}}})
        assert bpe.model_type == "bpe"
        assert plain.model_type == "unknown"

    def test_top_candidate_hit(self, digit_tokenizer, fake_backend_factory) -> None:
        backend = fake_backend_factory(allowed={7})
        processor = asyncio.run(
            create_processor(
                regex("t7"), digit_tokenizer, ProcessorConfig(speculation_depth=3), backend=backend
            )
        )
        logits = torch.zeros(100)
        logits[5], logits[3], logits[7] = 3.0, 2.0, 1.0

        result = processor.process([], logits)

        assert result[7].item() == 1.0
        assert sum(not math.isinf(v) for v in result.tolist()) == 1
        assert backend.session.mask_calls == 0

    def test_full_mask_fallback(self, digit_tokenizer, fake_backend_factory) -> None:
        backend = fake_backend_factory(allowed={50})
        processor = asyncio.run(
            create_processor(
                regex("t50"), digit_tokenizer, ProcessorConfig(speculation_depth=3), backend=backend
            )
        )
        logits = torch.zeros(100)
        logits[5], logits[3], logits[7], logits[50] = 3.0, 2.0, 1.0, 0.5

        result = processor.process([], logits)

        assert result[50].item() == 0.5
        assert sum(not math.isinf(v) for v in result.tolist()) == 1
        assert backend.session.mask_calls == 1


class TestGenerationLoop:
    """A full greedy loop driven by the processor."""

    def _run(self, processor, logits_for_step, max_tokens=10):
        for step in range(max_tokens):
            logits = processor.process(processor.get_generated_tokens(), logits_for_step(step))
            processor.on_token(greedy(logits))
            if processor.can_stop():
                break
        return processor.get_generated_tokens()

    def test_follows_grammar_despite_model_preference(self, digit_tokenizer) -> None:
        script = [12, 40, 3]
        processor = asyncio.run(
            create_processor(regex("t12t40t3"), digit_tokenizer, backend=ScriptedBackend(script))
        )

        # Model always prefers token 99, which the grammar never allows
        assert self._run(processor, lambda step: torch.linspace(0.0, 1.0, 100)) == script
        assert processor.get_stats().misses == 3

    def test_model_agrees_with_grammar(self, digit_tokenizer) -> None:
        script = [4, 8]
        processor = asyncio.run(
            create_processor(
                json_schema({"type": "integer"}), digit_tokenizer, backend=ScriptedBackend(script)
            )
        )

        def logits_for_step(step):
            logits = torch.zeros(100)
            logits[script[step]] = 5.0
            return logits

        assert self._run(processor, logits_for_step) == script
        stats = processor.get_stats()
        assert stats.hits == 2
        assert stats.full_masks == 0

    def test_reset_reuses_matcher(self, digit_tokenizer) -> None:
        script = [1, 2]
        processor = asyncio.run(
            create_processor(regex("t1t2"), digit_tokenizer, backend=ScriptedBackend(script))
        )
        first = self._run(processor, lambda step: torch.zeros(100))
        processor.reset()
        second = self._run(processor, lambda step: torch.zeros(100))
        assert first == second == script


class TestRemoteTokenizerPipeline:
    """Fetch a tokenizer over HTTP and drive a matcher with it."""

    def test_fetch_then_match(self, monkeypatch, fake_backend) -> None:
        monkeypatch.delenv("HF_TOKEN", raising=False)
        monkeypatch.delenv("HF_ENDPOINT", raising=False)
        document = {
            "model": {"type": "BPE", "vocab": {"a": 0, "b": 1}, "merges": ["a b"]},
            "added_tokens": [{"id": 2, "content": "</s>", "special": True}],
        }
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json=document))

        async def build():
            tokenizer = await load_tokenizer_data("org/tiny", transport=transport)
            return await GrammarMatcher.create(regex("ab"), tokenizer, backend=fake_backend)

        matcher = asyncio.run(build())

        assert matcher.vocab_size == 3
        assert matcher.is_token_allowed(2) is True
        assert matcher.is_token_allowed(3) is False
