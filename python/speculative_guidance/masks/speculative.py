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
"""Speculative grammar masking for logits.

A full vocabulary mask enumerates every token against the automaton; a
single-token check is nearly free. In the common case the model's top-ranked
candidates are already grammar-valid, so we check those one by one first and
only compute the full mask when all of them fail.

Key insight: with speculation depth k, a hit costs at most k single-token
checks instead of one full-vocabulary enumeration.

Fast path (hit): every logit except the accepted candidate becomes -inf, which
forces that token. Slow path (miss): invalid tokens become -inf and the
distribution over valid tokens is preserved.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import torch

from ..backend.matcher import GrammarMatcher
from ..config import ProcessorConfig

logger = logging.getLogger(__name__)

NEG_INF = float("-inf")


@dataclass
class SpeculationStats:
    """Statistics for speculative masking.

    Attributes:
        steps: Number of process() calls
        hits: Steps resolved by a top-k candidate
        misses: Steps that fell back to the full mask
        candidate_checks: Single-token checks issued
        full_masks: Full vocabulary masks computed
    """

    steps: int = 0
    hits: int = 0
    misses: int = 0
    candidate_checks: int = 0
    full_masks: int = 0

    @property
    def hit_rate(self) -> float:
        """Fraction of steps resolved on the fast path."""
        if self.steps == 0:
            return 0.0
        return self.hits / self.steps


def rank_candidates(logits: torch.Tensor, k: int) -> List[int]:
    """Top-k token ids by descending logit, ties broken by ascending id."""
    order = torch.sort(logits, descending=True, stable=True).indices
    return order[:k].tolist()


def mask_all_except(logits: torch.Tensor, token_id: int) -> torch.Tensor:
    """New tensor that is -inf everywhere except token_id."""
    masked = torch.full_like(logits, NEG_INF)
    masked[token_id] = logits[token_id]
    return masked


def apply_token_mask(logits: torch.Tensor, mask: torch.Tensor) -> torch.Tensor:
    """Set logits to -inf in place wherever mask is 0.

    Positions beyond the end of mask count as disallowed.
    """
    allowed = torch.zeros(logits.shape[-1], dtype=torch.bool, device=logits.device)
    width = min(mask.shape[-1], logits.shape[-1])
    allowed[:width] = mask[:width].to(device=logits.device, dtype=torch.bool)
    return logits.masked_fill_(~allowed, NEG_INF)


class SpeculativeLogitsProcessor:
    """Grammar-constrained logits processor with speculative checking.

    Usage:
        processor = SpeculativeLogitsProcessor(matcher, ProcessorConfig(speculation_depth=3))

        for step in range(max_tokens):
            logits = processor.process(input_ids, model(input_ids))
            token = sample(logits)
            processor.on_token(token)
            if processor.can_stop():
                break

    on_token() must be called exactly once per sampled token, before the next
    process() call, so the matcher stays in sync with the emitted tokens.
    """

    def __init__(
        self,
        matcher: GrammarMatcher,
        config: Optional[ProcessorConfig] = None,
    ) -> None:
        self._matcher = matcher
        self._config = config or ProcessorConfig()
        self._generated_tokens: List[int] = []
        self._stats = SpeculationStats()

    @property
    def config(self) -> ProcessorConfig:
        return self._config

    @property
    def speculation_depth(self) -> int:
        return self._config.speculation_depth

    def _trace(self, message: str) -> None:
        if self._config.debug:
            logger.info(f"[SpeculativeLogitsProcessor] {message}")
        else:
            logger.debug(message)

    def process(self, input_ids: Sequence[int], logits: torch.Tensor) -> torch.Tensor:
        """Mask logits that violate the grammar.

        Args:
            input_ids: Token ids of the sequence so far (not used for masking;
                the matcher state is the source of truth)
            logits: 1-D logits over the vocabulary; may be modified in place

        Returns:
            The constrained logits
        """
        if logits.dim() != 1:
            raise ValueError(f"Expected 1-D logits, got shape {tuple(logits.shape)}")

        self._stats.steps += 1
        candidates = rank_candidates(logits, self._config.speculation_depth)
        self._trace(f"step={self._stats.steps} top{len(candidates)}={candidates}")

        for rank, token_id in enumerate(candidates):
            self._stats.candidate_checks += 1
            if self._matcher.is_token_allowed(token_id):
                self._stats.hits += 1
                self._trace(f"speculation hit token={token_id} rank={rank}")
                return mask_all_except(logits, token_id)

        self._stats.misses += 1
        self._stats.full_masks += 1
        self._trace("speculation miss, computing full mask")
        mask = self._matcher.get_token_mask()
        return apply_token_mask(logits, mask)

    def __call__(self, input_ids, scores: torch.Tensor) -> torch.Tensor:
        """Logits-processor hook for host loops passing (1, V) scores.

        Accepts (V,) or (1, V) scores and returns the same shape.
        """
        ids = input_ids.tolist() if isinstance(input_ids, torch.Tensor) else list(input_ids)
        if ids and isinstance(ids[0], list):
            ids = ids[0]

        if scores.dim() == 2:
            if scores.shape[0] != 1:
                raise ValueError(
                    f"Batched scores are not supported, got batch size {scores.shape[0]}"
                )
            return self.process(ids, scores[0]).unsqueeze(0)
        return self.process(ids, scores)

    def on_token(self, token_id: int) -> None:
        """Record a sampled token and advance the matcher with it."""
        self._generated_tokens.append(token_id)
        self._matcher.advance(token_id)
        self._trace(f"advanced token={token_id} position={len(self._generated_tokens)}")

    def can_stop(self) -> bool:
        """True if generation may terminate at the current position."""
        return self._matcher.is_complete()

    def reset(self) -> None:
        """Prepare for a new generation with the original grammar."""
        self._generated_tokens = []
        self._matcher.reset()

    def get_generated_tokens(self) -> List[int]:
        """Tokens accepted so far (a copy)."""
        return list(self._generated_tokens)

    def get_stats(self) -> SpeculationStats:
        """Speculation statistics, cumulative across resets (a copy)."""
        return SpeculationStats(
            steps=self._stats.steps,
            hits=self._stats.hits,
            misses=self._stats.misses,
            candidate_checks=self._stats.candidate_checks,
            full_masks=self._stats.full_masks,
        )


async def create_processor(
    grammar,
    tokenizer,
    config: Optional[ProcessorConfig] = None,
    backend=None,
) -> SpeculativeLogitsProcessor:
    """Factory function to create a SpeculativeLogitsProcessor.

    Args:
        grammar: Grammar definition to enforce
        tokenizer: Canonical TokenizerData
        config: Processor configuration (default: ProcessorConfig())
        backend: Oracle backend (default: LLGuidanceBackend)

    Returns:
        New SpeculativeLogitsProcessor over a fresh GrammarMatcher
    """
    matcher = await GrammarMatcher.create(grammar, tokenizer, backend=backend)
    return SpeculativeLogitsProcessor(matcher, config)
