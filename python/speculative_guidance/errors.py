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
"""Exception hierarchy for speculative guidance.

All errors raised by this package derive from GuidanceError so hosts can
catch them with a single clause. None of them has a recovery path inside the
package: a failure during initialization aborts the whole session.
"""

from __future__ import annotations

from typing import Optional


class GuidanceError(Exception):
    """Base class for all speculative guidance errors."""


class VocabularyNotFoundError(GuidanceError):
    """No usable vocabulary source on the given tokenizer."""


class MalformedDescriptorError(GuidanceError):
    """A tokenizer description document is missing required fields."""


class FetchError(GuidanceError):
    """Remote tokenizer retrieval failed.

    Attributes:
        status_code: HTTP status of the response, None for transport failures
        url: The URL that was requested
        response_body: Body of the failed response, if any
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        url: Optional[str] = None,
        response_body: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.url = url
        self.response_body = response_body


class OracleInitError(GuidanceError):
    """The grammar oracle rejected the grammar or tokenizer data."""


class NotInitializedError(GuidanceError):
    """An oracle operation was invoked before successful construction."""
