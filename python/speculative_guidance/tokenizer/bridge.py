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
"""Canonicalization of tokenizer descriptions.

Tokenizers reach us in several shapes: Hugging Face Python tokenizers expose
get_vocab(), decoded tokenizer.json documents nest the vocabulary under
"model", and some wrappers carry a bare "vocab" field. Every downstream
oracle check depends on the id mapping being exact, so all of them are
folded into one immutable TokenizerData record here.

Resolution order for the vocabulary:
    1. get_vocab() accessor (always preferred when present)
    2. model.vocab
    3. vocab
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple, Union

from ..errors import MalformedDescriptorError, VocabularyNotFoundError

logger = logging.getLogger(__name__)

MODEL_TYPE_BPE = "bpe"
MODEL_TYPE_UNKNOWN = "unknown"

MergeRule = Tuple[str, str]

_MISSING = object()


@dataclass(frozen=True)
class AddedToken:
    """A vocabulary entry with special handling metadata.

    Attributes:
        id: Token id (index into the logits vector)
        content: Literal token text
        single_word: Only match as a whole word
        lstrip: Strip whitespace on the left when matching
        rstrip: Strip whitespace on the right when matching
        normalized: Subject to the tokenizer's normalizer
        special: Special (control) token
    """

    id: int
    content: str
    single_word: bool = False
    lstrip: bool = False
    rstrip: bool = False
    normalized: bool = True
    special: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "single_word": self.single_word,
            "lstrip": self.lstrip,
            "rstrip": self.rstrip,
            "normalized": self.normalized,
            "special": self.special,
        }


@dataclass(frozen=True)
class TokenizerData:
    """Canonical tokenizer record handed to the grammar oracle.

    Attributes:
        vocab: Token string -> id
        merges: Ordered merge rules (empty for non-BPE models)
        added_tokens: Added/special tokens
        model_type: Detected model family ("bpe" or "unknown"), advisory only
        decoder: tokenizer.json decoder component, when the source carries one
        pre_tokenizer: tokenizer.json pre_tokenizer component, when present
    """

    vocab: Dict[str, int]
    merges: Tuple[MergeRule, ...] = ()
    added_tokens: Tuple[AddedToken, ...] = ()
    model_type: str = MODEL_TYPE_UNKNOWN
    decoder: Optional[Dict[str, Any]] = None
    pre_tokenizer: Optional[Dict[str, Any]] = None

    @property
    def vocab_size(self) -> int:
        """Length of the logits vector this tokenizer implies (max id + 1)."""
        ids = list(self.vocab.values())
        ids.extend(token.id for token in self.added_tokens)
        return max(ids) + 1 if ids else 0

    def to_dict(self) -> Dict[str, Any]:
        """Canonical record in the shape the oracle consumes.

        decoder and pre_tokenizer are only included when known.
        """
        record: Dict[str, Any] = {
            "vocab": dict(self.vocab),
            "merges": [f"{left} {right}" for left, right in self.merges],
            "added_tokens": [token.to_dict() for token in self.added_tokens],
            "model_type": self.model_type,
        }
        if self.decoder is not None:
            record["decoder"] = dict(self.decoder)
        if self.pre_tokenizer is not None:
            record["pre_tokenizer"] = dict(self.pre_tokenizer)
        return record

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


def _field(source: Any, name: str, default: Any = None) -> Any:
    """Read a field from a mapping by key or from an object by attribute."""
    if source is None:
        return default
    if isinstance(source, Mapping):
        value = source.get(name, _MISSING)
    else:
        value = getattr(source, name, _MISSING)
    return default if value is _MISSING or value is None else value


def _to_record(vocab: Any) -> Dict[str, int]:
    """Normalize a mapping or an ordered (token, id) sequence to a plain dict."""
    if isinstance(vocab, Mapping):
        items: Iterable = vocab.items()
    else:
        items = vocab
    record: Dict[str, int] = {}
    for token, token_id in items:
        record[str(token)] = int(token_id)
    return record


def _normalize_merge(rule: Any) -> MergeRule:
    if isinstance(rule, str):
        left, sep, right = rule.partition(" ")
        if not sep:
            raise MalformedDescriptorError(f"Merge rule without separator: {rule!r}")
        return (left, right)
    pair = tuple(rule)
    if len(pair) != 2:
        raise MalformedDescriptorError(f"Merge rule must be a pair, got {rule!r}")
    return (str(pair[0]), str(pair[1]))


def _normalize_merges(merges: Any) -> Tuple[MergeRule, ...]:
    if not merges:
        return ()
    return tuple(_normalize_merge(rule) for rule in merges)


def _normalize_added_token(entry: Any, token_id: Any = None) -> AddedToken:
    return AddedToken(
        id=int(_field(entry, "id", token_id)),
        content=str(_field(entry, "content")),
        single_word=bool(_field(entry, "single_word", False)),
        lstrip=bool(_field(entry, "lstrip", False)),
        rstrip=bool(_field(entry, "rstrip", False)),
        normalized=bool(_field(entry, "normalized", True)),
        special=bool(_field(entry, "special", False)),
    )


def _normalize_added_tokens(source: Any) -> Tuple[AddedToken, ...]:
    entries = _field(source, "added_tokens")
    if entries is not None:
        return tuple(_normalize_added_token(entry) for entry in entries)

    # Hugging Face Python tokenizers: {id: AddedToken}
    decoder = _field(source, "added_tokens_decoder")
    if isinstance(decoder, Mapping):
        return tuple(
            _normalize_added_token(decoder[token_id], token_id)
            for token_id in sorted(decoder, key=int)
        )
    return ()


def detect_model_type(merges: Tuple[MergeRule, ...]) -> str:
    """Classify the model family from its merge rules."""
    return MODEL_TYPE_BPE if merges else MODEL_TYPE_UNKNOWN


def _resolve_vocab(tokenizer: Any) -> Optional[Dict[str, int]]:
    get_vocab = None if isinstance(tokenizer, Mapping) else getattr(tokenizer, "get_vocab", None)
    if callable(get_vocab):
        vocab = get_vocab()
        if vocab is not None:
            return _to_record(vocab)

    model_vocab = _field(_field(tokenizer, "model"), "vocab")
    if model_vocab is not None:
        return _to_record(model_vocab)

    vocab = _field(tokenizer, "vocab")
    if vocab is not None and not callable(vocab):
        return _to_record(vocab)

    return None


def _component(document: Any, name: str) -> Optional[Dict[str, Any]]:
    value = _field(document, name)
    return dict(value) if isinstance(value, Mapping) else None


def _pipeline_components(tokenizer: Any) -> Tuple[Optional[Dict], Optional[Dict]]:
    """(decoder, pre_tokenizer) of a tokenizer.json document or fast tokenizer.

    Hugging Face fast tokenizers serialize their Rust pipeline through
    backend_tokenizer.to_str(); plain documents carry the components inline.
    """
    document = tokenizer
    if not isinstance(tokenizer, Mapping):
        backend = getattr(tokenizer, "backend_tokenizer", None)
        to_str = getattr(backend, "to_str", None)
        if not callable(to_str):
            return None, None
        document = json.loads(to_str())
    return _component(document, "decoder"), _component(document, "pre_tokenizer")


def extract_tokenizer_data(tokenizer: Any) -> TokenizerData:
    """Extract canonical tokenizer data from a tokenizer-like object.

    Args:
        tokenizer: A tokenizer object (e.g. a Hugging Face tokenizer) or a
            decoded tokenizer description document

    Returns:
        TokenizerData ready to hand to the grammar oracle

    Raises:
        VocabularyNotFoundError: If no vocabulary source yields data
    """
    vocab = _resolve_vocab(tokenizer)
    if vocab is None:
        raise VocabularyNotFoundError(
            "Unable to extract vocabulary from tokenizer: expected a get_vocab() "
            "method, a model.vocab field or a vocab field"
        )

    merges = _normalize_merges(_field(_field(tokenizer, "model"), "merges"))
    added_tokens = _normalize_added_tokens(tokenizer)
    decoder, pre_tokenizer = _pipeline_components(tokenizer)

    data = TokenizerData(
        vocab=vocab,
        merges=merges,
        added_tokens=added_tokens,
        model_type=detect_model_type(merges),
        decoder=decoder,
        pre_tokenizer=pre_tokenizer,
    )
    logger.debug(
        f"Extracted tokenizer data: {len(vocab)} tokens, {len(merges)} merges, "
        f"{len(added_tokens)} added tokens, model_type={data.model_type}"
    )
    return data


def parse_tokenizer_document(document: Any) -> TokenizerData:
    """Parse a decoded tokenizer.json document.

    Unlike extract_tokenizer_data, the document must carry model.vocab, and
    the declared model.type (lowercased) wins over merge-based detection.

    Raises:
        MalformedDescriptorError: If model.vocab is missing
    """
    if not isinstance(document, Mapping):
        raise MalformedDescriptorError(
            f"Invalid tokenizer document: expected an object, got {type(document).__name__}"
        )
    model = _field(document, "model")
    vocab = _field(model, "vocab")
    if vocab is None:
        raise MalformedDescriptorError("Invalid tokenizer document: missing model.vocab")

    merges = _normalize_merges(_field(model, "merges"))
    declared = _field(model, "type")
    model_type = str(declared).lower() if declared else detect_model_type(merges)

    return TokenizerData(
        vocab=_to_record(vocab),
        merges=merges,
        added_tokens=_normalize_added_tokens(document),
        model_type=model_type,
        decoder=_component(document, "decoder"),
        pre_tokenizer=_component(document, "pre_tokenizer"),
    )


def load_tokenizer_file(path: Union[str, Path]) -> TokenizerData:
    """Load TokenizerData from a local tokenizer.json file."""
    text = Path(path).read_text(encoding="utf-8")
    try:
        document = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedDescriptorError(f"Invalid tokenizer document {path}: {e}") from e
    return parse_tokenizer_document(document)
