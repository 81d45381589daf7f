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
"""Fetch tokenizer.json documents from a Hugging Face style hub."""

from __future__ import annotations

import logging
from typing import Dict, Optional

import httpx

from ..client.http import AsyncHttpTransport
from ..config import resolve_hub_token, resolve_hub_url
from .bridge import TokenizerData, parse_tokenizer_document

logger = logging.getLogger(__name__)


def tokenizer_url(model_id: str, revision: str = "main") -> str:
    """Path of tokenizer.json for model_id, relative to the hub base URL."""
    return f"/{model_id.strip('/')}/resolve/{revision}/tokenizer.json"


async def load_tokenizer_data(
    model_id: str,
    *,
    token: Optional[str] = None,
    base_url: Optional[str] = None,
    revision: str = "main",
    timeout: float = 30.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> TokenizerData:
    """Load tokenizer data for a model id by fetching its tokenizer.json.

    Args:
        model_id: Hub model id (e.g. "gpt2", "meta-llama/Llama-2-7b")
        token: Bearer credential for private models (default: HF_TOKEN)
        base_url: Alternate hub location (default: HF_ENDPOINT or huggingface.co)
        revision: Branch, tag or commit to resolve
        timeout: Request timeout in seconds
        transport: Optional httpx transport override

    Returns:
        TokenizerData parsed from the fetched document

    Raises:
        FetchError: On transport failure or a non-success response status
        MalformedDescriptorError: If the document is not JSON or lacks model.vocab

    Example:
        >>> data = asyncio.run(load_tokenizer_data("gpt2"))
    """
    headers: Dict[str, str] = {}
    credential = resolve_hub_token(token)
    if credential:
        headers["Authorization"] = f"Bearer {credential}"

    async with AsyncHttpTransport(
        resolve_hub_url(base_url),
        timeout=timeout,
        headers=headers,
        transport=transport,
    ) as http:
        document, latency_ms = await http.get_json(tokenizer_url(model_id, revision))

    data = parse_tokenizer_document(document)
    logger.info(
        f"Loaded tokenizer for {model_id} in {latency_ms:.1f}ms "
        f"({len(data.vocab)} tokens, model_type={data.model_type})"
    )
    return data
