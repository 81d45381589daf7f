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
"""Oracle backend built on llguidance.

llguidance computes token masks with lazy automata (~50us/token). This module
adapts its LLMatcher to the OracleSession interface:

    - is_token_allowed -> LLMatcher.validate_tokens([t])
    - get_token_mask   -> fill_next_token_bitmask, unpacked to one byte per token
    - advance          -> LLMatcher.consume_token
    - is_complete      -> LLMatcher.is_accepting
    - reset            -> LLMatcher.reset, or a new matcher for a new grammar

The canonical tokenizer record is rebuilt into a tokenizer.json document,
which is what LLTokenizer consumes.

References:
    - llguidance: Dynamic mask computation with lazy automata
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Dict, Iterator, List, Optional, Tuple

import torch

from ..config import resolve_llguidance_log_level
from ..errors import GuidanceError, OracleInitError

logger = logging.getLogger(__name__)

# Contents conventionally used for end-of-sequence, most common first
EOS_CANDIDATES = (
    "</s>",
    "<|endoftext|>",
    "<|im_end|>",
    "<|eot_id|>",
    "<|end_of_text|>",
    "<eos>",
)


# Decoders llguidance can classify: ByteLevel, or a Sequence containing ByteFallback
BYTE_LEVEL_DECODER = {
    "type": "ByteLevel",
    "add_prefix_space": True,
    "trim_offsets": True,
    "use_regex": True,
}
BYTE_FALLBACK_DECODER = {
    "type": "Sequence",
    "decoders": [
        {"type": "Replace", "pattern": {"String": "▁"}, "content": " "},
        {"type": "ByteFallback"},
        {"type": "Fuse"},
    ],
}

# GPT-2 byte-level markers for space and newline
_BYTE_LEVEL_MARKERS = ("Ġ", "Ċ")


def _load_llguidance() -> Any:
    import llguidance
    import llguidance.torch  # noqa: F401

    return llguidance


def canonical_vocab_size(tokenizer: Dict[str, Any]) -> int:
    """Max id over vocab and added tokens, plus one."""
    ids: List[int] = list(tokenizer.get("vocab", {}).values())
    ids.extend(int(t["id"]) for t in tokenizer.get("added_tokens", []))
    return max(ids) + 1 if ids else 0


def choose_eos_token(tokenizer: Dict[str, Any]) -> Optional[int]:
    """Pick the end-of-sequence id from the special added tokens."""
    special = [t for t in tokenizer.get("added_tokens", []) if t.get("special")]
    by_content = {t["content"]: int(t["id"]) for t in special}
    for content in EOS_CANDIDATES:
        if content in by_content:
            return by_content[content]
    if special:
        return int(special[-1]["id"])
    return None


def is_supported_decoder(decoder: Optional[Dict[str, Any]]) -> bool:
    """True if llguidance can derive token bytes from this decoder."""
    if not decoder:
        return False
    if decoder.get("type") == "ByteLevel":
        return True
    if decoder.get("type") == "Sequence":
        return any(d.get("type") == "ByteFallback" for d in decoder.get("decoders") or [])
    return False


def infer_decoder(vocab: Dict[str, int]) -> Dict[str, Any]:
    """Choose a decoder for a vocabulary that did not come with a usable one.

    Byte-level vocabularies (GPT-2 style "Ġ" markers) and vocabularies made only
    of printable ASCII without spaces decode correctly as ByteLevel. Everything
    else is treated as literal text with "▁" for space and <0xHH> byte tokens.
    """
    tokens = list(vocab)
    if any(marker in token for token in tokens for marker in _BYTE_LEVEL_MARKERS):
        return dict(BYTE_LEVEL_DECODER)
    if all(token and all("!" <= ch <= "~" for ch in token) for token in tokens):
        return dict(BYTE_LEVEL_DECODER)
    return dict(BYTE_FALLBACK_DECODER)


def usable_merges(vocab: Dict[str, int], merges: List[str]) -> List[str]:
    """Drop merge rules whose parts or result are missing from the vocabulary.

    The tokenizers BPE loader rejects such rules outright; masks do not
    depend on merges, so they are skipped instead.
    """
    kept = []
    for rule in merges:
        left, _, right = rule.partition(" ")
        if left in vocab and right in vocab and left + right in vocab:
            kept.append(rule)
    if len(kept) != len(merges):
        logger.debug(f"Skipped {len(merges) - len(kept)} merges not covered by the vocabulary")
    return kept


def build_tokenizer_json(tokenizer: Dict[str, Any]) -> str:
    """Build a tokenizer.json document from the canonical tokenizer record.

    The model is always emitted as BPE; with no merges it degenerates to a
    plain vocabulary lookup. A carried decoder is kept when llguidance
    supports it, otherwise one is inferred from the vocabulary.
    """
    vocab = tokenizer.get("vocab", {})
    decoder = tokenizer.get("decoder")
    if not is_supported_decoder(decoder):
        decoder = infer_decoder(vocab)

    document = {
        "version": "1.0",
        "truncation": None,
        "padding": None,
        "added_tokens": tokenizer.get("added_tokens", []),
        "normalizer": None,
        "pre_tokenizer": tokenizer.get("pre_tokenizer"),
        "post_processor": None,
        "decoder": decoder,
        "model": {
            "type": "BPE",
            "dropout": None,
            "unk_token": None,
            "continuing_subword_prefix": None,
            "end_of_word_suffix": None,
            "fuse_unk": False,
            "byte_fallback": False,
            "vocab": vocab,
            "merges": usable_merges(vocab, tokenizer.get("merges", [])),
        },
    }
    return json.dumps(document, ensure_ascii=False)


def unpack_bitmask(words: torch.Tensor, vocab_size: int) -> torch.Tensor:
    """Unpack a packed int32 token bitmask into one uint8 per token.

    Token i is allowed iff bit (i % 32) of words[i // 32] is set.
    """
    shifts = torch.arange(32, dtype=torch.int64, device=words.device)
    bits = (words.to(torch.int64).unsqueeze(-1) >> shifts) & 1
    return bits.reshape(-1)[:vocab_size].to(torch.uint8)


_LARK_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


def _lark_identifier_spans(text: str) -> Iterator[Tuple[int, int]]:
    """Spans of identifiers outside string literals, regexes and comments."""
    i, n = 0, len(text)
    while i < n:
        if text.startswith("//", i):
            newline = text.find("\n", i)
            if newline == -1:
                return
            i = newline
            continue
        ch = text[i]
        if ch in "\"/":
            j = i + 1
            while j < n and text[j] != ch:
                j += 2 if text[j] == "\\" else 1
            i = j + 1
            continue
        match = _LARK_IDENTIFIER.match(text, i)
        if match:
            yield match.start(), match.end()
            i = match.end()
        else:
            i += 1


def select_lark_start(text: str, start: str) -> str:
    """Make `start` the entry rule of a Lark grammar.

    llguidance always enters at the rule named "start". For another symbol a
    "start: <symbol>" rule is prepended; a "start" rule the grammar already
    defines is renamed to a fresh name first, references included.
    """
    if start == "start":
        return text

    spans = list(_lark_identifier_spans(text))
    names = {text[a:b] for a, b in spans}
    if "start" in names:
        alias = "start_rule"
        suffix = 1
        while alias in names:
            alias = f"start_rule{suffix}"
            suffix += 1

        pieces = []
        last = 0
        for a, b in spans:
            if text[a:b] == "start":
                pieces.append(text[last:a])
                pieces.append(alias)
                last = b
        pieces.append(text[last:])
        text = "".join(pieces)

    return f"start: {start}\n{text}"


def compile_grammar(llguidance: Any, wire: Dict[str, Any]) -> str:
    """Compile the wire schema into an llguidance grammar string."""
    grammars = wire.get("grammars") or []
    if not grammars:
        raise OracleInitError("No grammars provided")

    # Only the first constraint is used
    constraint = grammars[0]
    if "json_schema" in constraint:
        return llguidance.LLMatcher.grammar_from_json_schema(constraint["json_schema"])
    if "rx" in constraint:
        return llguidance.grammar_from("regex", constraint["rx"])
    if "lark" in constraint:
        text = select_lark_start(constraint["lark"], constraint.get("start") or "start")
        return llguidance.grammar_from("grammar", text)
    raise OracleInitError(f"Unrecognized grammar constraint keys: {sorted(constraint)}")


class LLGuidanceSession:
    """OracleSession backed by one llguidance LLMatcher."""

    def __init__(
        self,
        llguidance: Any,
        ll_tokenizer: Any,
        grammar: str,
        vocab_size: int,
        log_level: int = 1,
    ):
        self._llg = llguidance
        self._tokenizer = ll_tokenizer
        self._grammar = grammar
        self._original_grammar = grammar
        self._vocab_size = vocab_size
        self._log_level = log_level
        self._matcher = self._new_matcher(grammar)
        self._bitmask = llguidance.torch.allocate_token_bitmask(1, vocab_size)

    def _new_matcher(self, grammar: str) -> Any:
        matcher = self._llg.LLMatcher(self._tokenizer, grammar, log_level=self._log_level)
        if matcher.is_error():
            raise OracleInitError(f"Grammar rejected by llguidance: {matcher.get_error()}")
        return matcher

    @property
    def vocab_size(self) -> int:
        return self._vocab_size

    def is_token_allowed(self, token_id: int) -> bool:
        return self._matcher.validate_tokens([token_id]) == 1

    def get_token_mask(self) -> torch.Tensor:
        self._llg.torch.fill_next_token_bitmask(self._matcher, self._bitmask, 0)
        return unpack_bitmask(self._bitmask[0], self._vocab_size)

    def advance(self, token_id: int) -> None:
        if not self._matcher.consume_token(token_id):
            logger.debug(f"llguidance refused token {token_id}: {self._matcher.get_error()}")

    def is_complete(self) -> bool:
        return self._matcher.is_accepting()

    def reset(self, grammar_json: str) -> None:
        """Restart the parse; an empty grammar_json means the original grammar.

        If the new grammar is rejected, the current matcher is still reset
        before the error propagates.
        """
        if not grammar_json:
            if self._grammar is self._original_grammar:
                self._matcher.reset()
            else:
                self._matcher = self._new_matcher(self._original_grammar)
                self._grammar = self._original_grammar
            return

        try:
            grammar = compile_grammar(self._llg, json.loads(grammar_json))
            matcher = self._new_matcher(grammar)
        except (GuidanceError, TypeError, ValueError, RuntimeError):
            self._matcher.reset()
            raise
        self._matcher = matcher
        self._grammar = grammar


class LLGuidanceBackend:
    """OracleBackend producing llguidance sessions.

    Example:
        >>> backend = LLGuidanceBackend()
        >>> await backend.start()
        >>> session = backend.init(grammar_json, tokenizer_json)
    """

    def __init__(self, log_level: Optional[int] = None):
        self._log_level = resolve_llguidance_log_level() if log_level is None else log_level
        self._llguidance: Optional[Any] = None

    async def start(self) -> None:
        """Import llguidance off the event loop."""
        if self._llguidance is not None:
            return
        try:
            self._llguidance = await asyncio.to_thread(_load_llguidance)
        except ImportError as e:
            raise OracleInitError(
                "llguidance is required for the default oracle backend. "
                "Install with: pip install llguidance"
            ) from e

    def init(self, grammar_json: str, tokenizer_json: str) -> LLGuidanceSession:
        if self._llguidance is None:
            raise OracleInitError("LLGuidanceBackend.start() must complete before init()")

        tokenizer = json.loads(tokenizer_json)
        vocab_size = canonical_vocab_size(tokenizer)
        if vocab_size == 0:
            raise OracleInitError("Tokenizer vocabulary is empty")

        ll_tokenizer = self._llguidance.LLTokenizer(
            build_tokenizer_json(tokenizer),
            n_vocab=vocab_size,
            eos_token=choose_eos_token(tokenizer),
        )
        grammar = compile_grammar(self._llguidance, json.loads(grammar_json))
        logger.debug(f"Creating llguidance session (vocab_size={vocab_size})")
        return LLGuidanceSession(
            self._llguidance,
            ll_tokenizer,
            grammar,
            vocab_size,
            log_level=self._log_level,
        )
