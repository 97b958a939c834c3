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

"""Network I/O for intuneappbuilder.

This package provides the remote side of publishing:

- graph: Microsoft Graph calls for apps, content versions and content files
- blob: Put Block / Put Block List against a pre-signed blob URI
- upload: chunked, renewing, retrying block upload built on blob

Example:
    ```python
    from intuneappbuilder.io import BlobClient, ChunkedUploader, GraphClient

    graph = GraphClient(token)
    uploader = ChunkedUploader(BlobClient(), renew=renew_uri)
    ```
"""

from .blob import BlobClient
from .graph import GraphClient
from .http import make_session
from .upload import ChunkedUploader, make_status_predicate

__all__ = [
    "BlobClient",
    "ChunkedUploader",
    "GraphClient",
    "make_session",
    "make_status_predicate",
]
