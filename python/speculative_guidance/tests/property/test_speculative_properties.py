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
"""Property-based tests for speculative masking using Hypothesis.

The key invariant is: the output NEVER leaves a grammar-invalid token
with a finite logit, and never blocks every token while the grammar still
allows one.

Tests cover:
1. Soundness: every finite output logit belongs to an allowed token
2. Fast path: exactly one finite logit, equal to its input value
3. Slow path: allowed logits keep their input values
4. Candidate checks are bounded by the speculation depth
5. Debug mode never changes results
"""

import math

import torch
from hypothesis import HealthCheck, given, settings, strategies as st

from speculative_guidance.config import ProcessorConfig
from speculative_guidance.masks.speculative import SpeculativeLogitsProcessor, rank_candidates


class SetMatcher:
    """Matcher with a fixed allowed set, counting queries."""

    def __init__(self, vocab_size: int, allowed):
        self.vocab_size = vocab_size
        self.allowed = set(allowed)
        self.checks = 0
        self.mask_calls = 0

    def is_token_allowed(self, token_id: int) -> bool:
        self.checks += 1
        return token_id in self.allowed

    def get_token_mask(self) -> torch.Tensor:
        self.mask_calls += 1
        mask = torch.zeros(self.vocab_size, dtype=torch.uint8)
        for token_id in self.allowed:
            mask[token_id] = 1
        return mask


@st.composite
def masking_case(draw):
    """(logits, allowed ids, speculation depth) with a non-empty allowed set."""
    vocab_size = draw(st.integers(min_value=1, max_value=64))
    values = draw(
        st.lists(
            st.floats(min_value=-1e4, max_value=1e4, allow_nan=False, width=32),
            min_size=vocab_size,
            max_size=vocab_size,
        )
    )
    allowed = draw(
        st.sets(st.integers(min_value=0, max_value=vocab_size - 1), min_size=1)
    )
    depth = draw(st.integers(min_value=1, max_value=8))
    return torch.tensor(values, dtype=torch.float32), allowed, depth


PROPERTY_SETTINGS = settings(max_examples=200, suppress_health_check=[HealthCheck.too_slow])


@PROPERTY_SETTINGS
@given(masking_case())
def test_finite_logits_are_allowed(case):
    logits, allowed, depth = case
    matcher = SetMatcher(len(logits), allowed)
    processor = SpeculativeLogitsProcessor(matcher, ProcessorConfig(speculation_depth=depth))

    result = processor.process([], logits.clone())

    finite = {i for i, v in enumerate(result.tolist()) if not math.isinf(v)}
    assert finite
    assert finite <= allowed


@PROPERTY_SETTINGS
@given(masking_case())
def test_fast_path_forces_single_token(case):
    logits, allowed, depth = case
    matcher = SetMatcher(len(logits), allowed)
    processor = SpeculativeLogitsProcessor(matcher, ProcessorConfig(speculation_depth=depth))

    top = rank_candidates(logits, depth)
    hit = next((t for t in top if t in allowed), None)
    result = processor.process([], logits.clone())

    if hit is None:
        assert matcher.mask_calls == 1
        for token_id in allowed:
            assert result[token_id].item() == logits[token_id].item()
    else:
        assert matcher.mask_calls == 0
        finite = [i for i, v in enumerate(result.tolist()) if not math.isinf(v)]
        assert finite == [hit]
        assert result[hit].item() == logits[hit].item()


@PROPERTY_SETTINGS
@given(masking_case())
def test_checks_bounded_by_depth(case):
    logits, allowed, depth = case
    matcher = SetMatcher(len(logits), allowed)
    processor = SpeculativeLogitsProcessor(matcher, ProcessorConfig(speculation_depth=depth))

    processor.process([], logits.clone())

    assert matcher.checks <= min(depth, len(logits))
    assert matcher.mask_calls <= 1


@PROPERTY_SETTINGS
@given(masking_case())
def test_debug_mode_is_observational(case):
    logits, allowed, depth = case
    quiet = SpeculativeLogitsProcessor(
        SetMatcher(len(logits), allowed), ProcessorConfig(speculation_depth=depth)
    )
    loud = SpeculativeLogitsProcessor(
        SetMatcher(len(logits), allowed), ProcessorConfig(speculation_depth=depth, debug=True)
    )

    assert torch.equal(quiet.process([], logits.clone()), loud.process([], logits.clone()))


@PROPERTY_SETTINGS
@given(
    st.lists(
        st.floats(min_value=-100, max_value=100, allow_nan=False, width=32),
        min_size=1,
        max_size=50,
    ),
    st.integers(min_value=1, max_value=10),
)
def test_ranking_is_descending_with_ascending_ties(values, k):
    logits = torch.tensor(values, dtype=torch.float32)
    ranked = rank_candidates(logits, k)

    assert len(ranked) == min(k, len(values))
    keys = [(-logits[i].item(), i) for i in ranked]
    assert keys == sorted(keys)
    # Nothing outside the top-k outranks the last selected candidate
    last = keys[-1]
    for i in set(range(len(values))) - set(ranked):
        assert (-logits[i].item(), i) > last
