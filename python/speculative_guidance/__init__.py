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
"""Speculative guidance: grammar-constrained logits with speculative masking.

Sits between a token-generation loop and a grammar-matching oracle. Each
step, the model's top-ranked candidates are checked one by one against the
grammar; only when none of them is valid is a full vocabulary mask computed.

Key Components:
    - tokenizer: Canonical tokenizer records (local objects, tokenizer.json, hub)
    - grammars: JSON Schema / regex / Lark grammar definitions
    - backend: Oracle capability interface, GrammarMatcher, llguidance backend
    - masks: SpeculativeLogitsProcessor

Usage:
    data = extract_tokenizer_data(hf_tokenizer)
    processor = await create_processor(json_schema(schema), data)
    logits = processor.process(input_ids, logits)
"""

# Use lazy imports so that submodules can be used without torch-heavy imports
# Full imports are done on first access via __getattr__


def __getattr__(name: str):
    """Lazy import of module attributes."""
    # Errors
    if name in (
        "GuidanceError",
        "VocabularyNotFoundError",
        "MalformedDescriptorError",
        "FetchError",
        "OracleInitError",
        "NotInitializedError",
    ):
        from . import errors

        return getattr(errors, name)

    # Configuration
    if name == "ProcessorConfig":
        from .config import ProcessorConfig

        return ProcessorConfig

    # Tokenizer canonicalization
    if name in (
        "AddedToken",
        "TokenizerData",
        "extract_tokenizer_data",
        "parse_tokenizer_document",
        "load_tokenizer_file",
        "load_tokenizer_data",
    ):
        from . import tokenizer

        return getattr(tokenizer, name)

    # Grammar definitions
    if name in (
        "Grammar",
        "JsonSchemaGrammar",
        "RegexGrammar",
        "LarkGrammar",
        "json_schema",
        "regex",
        "lark",
        "to_oracle_schema",
        "serialize_grammar",
    ):
        from . import grammars

        return getattr(grammars, name)

    # Oracle boundary
    if name in (
        "GrammarMatcher",
        "MatcherState",
        "OracleBackend",
        "OracleSession",
        "LLGuidanceBackend",
    ):
        from . import backend

        return getattr(backend, name)

    # Masking
    if name in ("SpeculativeLogitsProcessor", "SpeculationStats", "create_processor"):
        from . import masks

        return getattr(masks, name)

    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    # Errors
    "GuidanceError",
    "VocabularyNotFoundError",
    "MalformedDescriptorError",
    "FetchError",
    "OracleInitError",
    "NotInitializedError",
    # Configuration
    "ProcessorConfig",
    # Tokenizer
    "AddedToken",
    "TokenizerData",
    "extract_tokenizer_data",
    "parse_tokenizer_document",
    "load_tokenizer_file",
    "load_tokenizer_data",
    # Grammars
    "Grammar",
    "JsonSchemaGrammar",
    "RegexGrammar",
    "LarkGrammar",
    "json_schema",
    "regex",
    "lark",
    "to_oracle_schema",
    "serialize_grammar",
    # Oracle boundary
    "GrammarMatcher",
    "MatcherState",
    "OracleBackend",
    "OracleSession",
    "LLGuidanceBackend",
    # Masking
    "SpeculativeLogitsProcessor",
    "SpeculationStats",
    "create_processor",
]

__version__ = "0.1.0"
