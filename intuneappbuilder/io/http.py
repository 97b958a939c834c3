# Copyright 2025 Roger Cibrian
#
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

"""HTTP session construction shared by the Graph and blob clients."""

from __future__ import annotations

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from intuneappbuilder import __version__

USER_AGENT = (
    f"intuneappbuilder/{__version__} (+https://github.com/RogerCibrian/intuneappbuilder)"
)


def make_session(retry_reads: bool = True) -> requests.Session:
    """Create a requests.Session with sane retry/backoff defaults.

    - Retries idempotent reads (GET/HEAD) on common transient status codes.
    - Applies exponential backoff.
    - Sets a User-Agent identifying the tool.

    Writes are never retried by the adapter. Callers that need to retry a
    write (block uploads, content-file creation) own that policy.

    Args:
        retry_reads: If False, mount adapters without any automatic retry.
            Used for blob storage, where a redirect or 403 must surface to
            the uploader instead of being followed or retried.
    """
    s = requests.Session()
    if retry_reads:
        retries = Retry(
            total=5,
            backoff_factor=0.5,
            status_forcelist=(429, 500, 502, 503, 504),
            allowed_methods=("GET", "HEAD"),
            raise_on_status=False,
        )
    else:
        retries = Retry(total=0, redirect=False, raise_on_status=False)
    s.headers.update({"User-Agent": USER_AGENT})
    s.mount("http://", HTTPAdapter(max_retries=retries))
    s.mount("https://", HTTPAdapter(max_retries=retries))
    return s
