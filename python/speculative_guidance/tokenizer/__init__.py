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
"""Tokenizer canonicalization and retrieval.

This module provides:
- TokenizerData / AddedToken: the canonical tokenizer record
- extract_tokenizer_data: normalize an in-memory tokenizer
- parse_tokenizer_document / load_tokenizer_file: tokenizer.json documents
- load_tokenizer_data: fetch tokenizer.json by model id
"""

from __future__ import annotations

from .bridge import (
    MODEL_TYPE_BPE,
    MODEL_TYPE_UNKNOWN,
    AddedToken,
    MergeRule,
    TokenizerData,
    detect_model_type,
    extract_tokenizer_data,
    load_tokenizer_file,
    parse_tokenizer_document,
)
from .hub import load_tokenizer_data, tokenizer_url

__all__ = [
    "MODEL_TYPE_BPE",
    "MODEL_TYPE_UNKNOWN",
    "AddedToken",
    "MergeRule",
    "TokenizerData",
    "detect_model_type",
    "extract_tokenizer_data",
    "load_tokenizer_data",
    "load_tokenizer_file",
    "parse_tokenizer_document",
    "tokenizer_url",
]
