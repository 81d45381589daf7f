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
"""Grammar definitions (JSON Schema, regex, Lark) and their wire schema."""

from __future__ import annotations

from .definition import (
    DEFAULT_START_SYMBOL,
    Grammar,
    JsonSchemaGrammar,
    LarkGrammar,
    RegexGrammar,
    json_schema,
    lark,
    regex,
    serialize_grammar,
    to_oracle_schema,
)

__all__ = [
    "DEFAULT_START_SYMBOL",
    "Grammar",
    "JsonSchemaGrammar",
    "LarkGrammar",
    "RegexGrammar",
    "json_schema",
    "lark",
    "regex",
    "serialize_grammar",
    "to_oracle_schema",
]
