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
"""Grammar definitions and their oracle wire schema.

A grammar is exactly one of three frozen variants:
    - JsonSchemaGrammar: JSON Schema constraint
    - RegexGrammar: regular-expression constraint
    - LarkGrammar: Lark-style structured grammar with a start symbol

The oracle accepts them as {"grammars": [<single constraint>]}.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Dict, Union

DEFAULT_START_SYMBOL = "start"


@dataclass(frozen=True)
class JsonSchemaGrammar:
    """JSON Schema constraint. schema is a mapping, a bool, or a JSON string."""

    schema: Any


@dataclass(frozen=True)
class RegexGrammar:
    """Regular-expression constraint."""

    pattern: str


@dataclass(frozen=True)
class LarkGrammar:
    """Structured grammar text with its start symbol."""

    grammar: str
    start_symbol: str = DEFAULT_START_SYMBOL


Grammar = Union[JsonSchemaGrammar, RegexGrammar, LarkGrammar]


def _decode_schema(schema: Any) -> Any:
    if isinstance(schema, (str, bytes)):
        return json.loads(schema)
    if isinstance(schema, Mapping):
        return dict(schema)
    return schema


def to_oracle_schema(grammar: Grammar) -> Dict[str, Any]:
    """Translate a grammar definition into the oracle wire schema.

    Raises:
        TypeError: If grammar is not one of the three grammar variants
        json.JSONDecodeError: If a JSON Schema given as a string is malformed
    """
    if isinstance(grammar, JsonSchemaGrammar):
        constraint: Dict[str, Any] = {"json_schema": _decode_schema(grammar.schema)}
    elif isinstance(grammar, RegexGrammar):
        constraint = {"rx": grammar.pattern}
    elif isinstance(grammar, LarkGrammar):
        constraint = {
            "lark": grammar.grammar,
            "start": grammar.start_symbol or DEFAULT_START_SYMBOL,
        }
    else:
        raise TypeError(f"Unsupported grammar variant: {type(grammar).__name__}")
    return {"grammars": [constraint]}


def serialize_grammar(grammar: Grammar) -> str:
    """JSON-encoded oracle wire schema for grammar."""
    return json.dumps(to_oracle_schema(grammar), ensure_ascii=False)


def json_schema(schema: Any) -> JsonSchemaGrammar:
    return JsonSchemaGrammar(schema=schema)


def regex(pattern: str) -> RegexGrammar:
    return RegexGrammar(pattern=pattern)


def lark(grammar: str, start_symbol: str = DEFAULT_START_SYMBOL) -> LarkGrammar:
    return LarkGrammar(grammar=grammar, start_symbol=start_symbol)
