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

"""Resolution and creation of the Intune app a package is published to.

An app is looked up by its id when the package carries a GUID id, otherwise
by display name. When nothing is found, a new app is created from the
package's app descriptor after required properties are filled in:

- run-as account: system
- install command: the setup file, or `msiexec /i "<setup file>"` for MSIs
- uninstall command: `echo Not Supported`, or `msiexec /x "<product code>"`
- detection: MSI product code, or an empty PowerShell detection script

All of these can be changed later in the Intune admin center.
"""

from __future__ import annotations

import base64
from typing import Any, Protocol
import uuid

from intuneappbuilder.exceptions import PublishError
from intuneappbuilder.io.graph import GraphClient
from intuneappbuilder.models import WIN32_LOB_APP, AppDescriptor


class AppResolver(Protocol):
    """Finds the existing remote app for a descriptor."""

    def resolve(self, app: AppDescriptor) -> dict[str, Any] | None:
        ...


def _is_guid(value: str | None) -> bool:
    if not value:
        return False
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


class GraphAppResolver:
    """Resolves apps by GUID id, else by display name, through Graph."""

    def __init__(self, graph: GraphClient) -> None:
        self.graph = graph

    def resolve(self, app: AppDescriptor) -> dict[str, Any] | None:
        if _is_guid(app.id):
            return self.graph.get_app(app.id)
        return self.graph.find_app_by_name(app.display_name)


def apply_defaults(body: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of a new-app body with required win32 properties filled.

    Values already present in body are kept. Non-win32 bodies are returned
    unchanged (as a copy).
    """
    result = dict(body)
    if result.get("@odata.type") != WIN32_LOB_APP:
        return result

    msi = result.get("msiInformation")
    setup = result.get("setupFilePath")

    if not result.get("installExperience"):
        result["installExperience"] = {"runAsAccount": "system"}
    if not result.get("installCommandLine"):
        result["installCommandLine"] = f'msiexec /i "{setup}"' if msi else setup
    if not result.get("uninstallCommandLine"):
        result["uninstallCommandLine"] = (
            f'msiexec /x "{msi["productCode"]}"' if msi else "echo Not Supported"
        )
    if not result.get("detectionRules"):
        if msi:
            rule = {
                "@odata.type": "#microsoft.graph.win32LobAppProductCodeDetection",
                "productCode": msi["productCode"],
            }
        else:
            # No way to infer detection without MSI metadata
            rule = {
                "@odata.type": "#microsoft.graph.win32LobAppPowerShellScriptDetection",
                "scriptContent": base64.b64encode(b"").decode("ascii"),
                "enforceSignatureCheck": False,
                "runAs32Bit": False,
            }
        result["detectionRules"] = [rule]
    return result


def get_or_create_app(
    app: AppDescriptor,
    graph: GraphClient,
    resolver: AppResolver | None = None,
) -> tuple[dict[str, Any], bool]:
    """Find the remote app for a descriptor, creating it when absent.

    Args:
        app: Descriptor from the package.
        graph: Graph client used to create the app.
        resolver: Resolver used to look up the app. Defaults to
            GraphAppResolver(graph).

    Returns:
        The remote app and whether it was created.

    Raises:
        PublishError: If the existing app is of a different type.
    """
    from intuneappbuilder.logging import get_global_logger

    logger = get_global_logger()
    resolver = resolver or GraphAppResolver(graph)
    created = False

    remote = resolver.resolve(app)
    if remote is None:
        logger.verbose("GRAPH", f"App {app.display_name} does not exist - creating new app")
        body = app.to_dict()
        body.pop("id", None)
        remote = graph.create_app(apply_defaults(body))
        created = True

    remote_type = str(remote.get("@odata.type", "")).lstrip("#")
    if remote_type != app.app_type:
        raise PublishError(
            f"Found existing application {remote.get('displayName')}, but it is of "
            f"type {remote_type} and the app being deployed is of type "
            f"{app.app_type} - delete the existing app and try again."
        )

    logger.verbose("GRAPH", f"Using app {remote.get('id')} ({remote.get('displayName')})")
    return remote, created
