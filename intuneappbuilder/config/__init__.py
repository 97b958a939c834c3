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

"""Settings loading for intuneappbuilder.

Built-in defaults are deep-merged with an optional YAML settings file
(dicts merge recursively, lists and scalars are replaced) and validated into
frozen Settings dataclasses.

Example:
    Basic usage:
        ```python
        from pathlib import Path
        from intuneappbuilder.config import load_settings

        settings = load_settings(Path("settings.yaml"))
        print(settings.lifecycle.timeout)  # 600.0 unless overridden
        ```
"""

from .loader import DEFAULT_SETTINGS, Settings, load_settings

__all__ = ["DEFAULT_SETTINGS", "Settings", "load_settings"]
