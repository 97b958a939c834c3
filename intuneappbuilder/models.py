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

"""Domain types for Intune app packages.

This module holds the data carried between the encoder, the portal
assembler and the upload pipeline:

- EncryptionEnvelope: keys, IV, MAC and digest for one encrypted container
- MsiInformation / MsiManifest: installer metadata for MSI sources
- AppDescriptor: the Graph mobile app record a package is published to
- ContentFileInfo: the content-file descriptor (name and sizes)
- Package: all of the above plus the encrypted data stream it owns
- ContentFile / ContentFileRef / UploadState: the remote content-file
  resource and its lifecycle states

JSON forms use the Graph camelCase property names with byte fields encoded
as base64, which is also the layout of the companion .intunewin.json file.

Example:
    Reading an envelope back from a companion file:
        ```python
        import json
        from intuneappbuilder.models import EncryptionEnvelope

        data = json.loads(Path("Setup.intunewin.json").read_text())
        envelope = EncryptionEnvelope.from_dict(data["encryptionInfo"])
        ```
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, BinaryIO
from xml.etree import ElementTree as ET
from xml.sax.saxutils import escape

from intuneappbuilder.exceptions import PackagingError

ENCRYPTION_KEY_SIZE = 32
MAC_KEY_SIZE = 32
IV_SIZE = 16
MAC_SIZE = 32
DIGEST_SIZE = 32
# HMAC digest followed by the IV, ahead of the ciphertext
HEADER_SIZE = MAC_SIZE + IV_SIZE

PROFILE_IDENTIFIER = "ProfileVersion1"
FILE_DIGEST_ALGORITHM = "SHA256"

WIN32_LOB_APP = "#microsoft.graph.win32LobApp"
WINDOWS_MOBILE_MSI = "#microsoft.graph.windowsMobileMSI"


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _unb64(value: Any, name: str) -> bytes:
    if not isinstance(value, str):
        raise PackagingError(f"Expected base64 string for '{name}', got {value!r}")
    try:
        return base64.b64decode(value, validate=True)
    except binascii.Error as err:
        raise PackagingError(f"Invalid base64 in '{name}': {err}") from err


def _xml_bool(value: bool) -> str:
    return "true" if value else "false"


# -------------------------------
# Encryption
# -------------------------------


@dataclass(frozen=True)
class EncryptionEnvelope:
    """Cryptographic material Intune needs to decrypt and verify a container.

    Attributes:
        encryption_key: AES-256 key (32 bytes).
        mac_key: HMAC-SHA256 key (32 bytes).
        initialization_vector: AES-CBC IV (16 bytes).
        mac: HMAC-SHA256 over IV + ciphertext (32 bytes).
        file_digest: SHA-256 of the plaintext (32 bytes).
        file_digest_algorithm: Always "SHA256".
        profile_identifier: Always "ProfileVersion1".
    """

    encryption_key: bytes
    mac_key: bytes
    initialization_vector: bytes
    mac: bytes
    file_digest: bytes
    file_digest_algorithm: str = FILE_DIGEST_ALGORITHM
    profile_identifier: str = PROFILE_IDENTIFIER

    def __post_init__(self) -> None:
        expected = {
            "encryption_key": ENCRYPTION_KEY_SIZE,
            "mac_key": MAC_KEY_SIZE,
            "initialization_vector": IV_SIZE,
            "mac": MAC_SIZE,
            "file_digest": DIGEST_SIZE,
        }
        for name, size in expected.items():
            value = getattr(self, name)
            if len(value) != size:
                raise PackagingError(
                    f"Invalid {name} length: expected {size} bytes, got {len(value)}"
                )

    def __repr__(self) -> str:
        # Key material stays out of logs and tracebacks
        return (
            f"EncryptionEnvelope(profile_identifier={self.profile_identifier!r}, "
            f"file_digest={self.file_digest.hex()!r})"
        )

    def to_dict(self) -> dict[str, str]:
        """Serialize to the Graph fileEncryptionInfo shape."""
        return {
            "encryptionKey": _b64(self.encryption_key),
            "macKey": _b64(self.mac_key),
            "initializationVector": _b64(self.initialization_vector),
            "mac": _b64(self.mac),
            "profileIdentifier": self.profile_identifier,
            "fileDigest": _b64(self.file_digest),
            "fileDigestAlgorithm": self.file_digest_algorithm,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EncryptionEnvelope:
        """Build an envelope from its Graph fileEncryptionInfo shape.

        Raises:
            PackagingError: If a field is missing, not base64, or has the
                wrong length.
        """
        try:
            return cls(
                encryption_key=_unb64(data["encryptionKey"], "encryptionKey"),
                mac_key=_unb64(data["macKey"], "macKey"),
                initialization_vector=_unb64(
                    data["initializationVector"], "initializationVector"
                ),
                mac=_unb64(data["mac"], "mac"),
                file_digest=_unb64(data["fileDigest"], "fileDigest"),
                file_digest_algorithm=data.get(
                    "fileDigestAlgorithm", FILE_DIGEST_ALGORITHM
                ),
                profile_identifier=data.get("profileIdentifier", PROFILE_IDENTIFIER),
            )
        except KeyError as err:
            raise PackagingError(f"encryptionInfo is missing field {err}") from err


# -------------------------------
# MSI metadata
# -------------------------------


class MsiPackageType(str, Enum):
    """Install scope of an MSI, derived from its ALLUSERS property."""

    PER_MACHINE = "perMachine"
    PER_USER = "perUser"
    DUAL_PURPOSE = "dualPurpose"


@dataclass(frozen=True)
class MsiInformation:
    """Graph win32LobAppMsiInformation for an MSI setup file."""

    product_code: str | None = None
    product_version: str | None = None
    upgrade_code: str | None = None
    requires_reboot: bool = False
    package_type: MsiPackageType = MsiPackageType.PER_MACHINE
    product_name: str | None = None
    publisher: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "productCode": self.product_code,
            "productVersion": self.product_version,
            "upgradeCode": self.upgrade_code,
            "requiresReboot": self.requires_reboot,
            "packageType": self.package_type.value,
            "productName": self.product_name,
            "publisher": self.publisher,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MsiInformation:
        return cls(
            product_code=data.get("productCode"),
            product_version=data.get("productVersion"),
            upgrade_code=data.get("upgradeCode"),
            requires_reboot=bool(data.get("requiresReboot", False)),
            package_type=MsiPackageType(data.get("packageType", "perMachine")),
            product_name=data.get("productName"),
            publisher=data.get("publisher"),
        )


# Attribute order is the order Intune's own serializer emits.
_MANIFEST_FIELDS = (
    ("MsiExecutionContext", "execution_context"),
    ("MsiRequiresReboot", "requires_reboot"),
    ("MsiUpgradeCode", "upgrade_code"),
    ("MsiIsMachineInstall", "is_machine_install"),
    ("MsiIsUserInstall", "is_user_install"),
    ("MsiIncludesServices", "includes_services"),
    ("MsiContainsSystemRegistryKeys", "contains_system_registry_keys"),
    ("MsiContainsSystemFolders", "contains_system_folders"),
)


@dataclass(frozen=True)
class MsiManifest:
    """Manifest attached to the content file of an MSI app.

    The binary form (to_bytes) is a single ASCII ``MobileMsiData`` element
    carrying every field as an attribute, with no XML declaration and an
    explicit end tag.
    """

    execution_context: str = "Any"
    requires_reboot: bool = False
    upgrade_code: str | None = None
    is_machine_install: bool = False
    is_user_install: bool = False
    includes_services: bool = False
    contains_system_registry_keys: bool = False
    contains_system_folders: bool = False

    def items(self) -> list[tuple[str, str]]:
        """Return (XML name, text) pairs in serialization order, skipping None."""
        pairs = []
        for xml_name, attr in _MANIFEST_FIELDS:
            value = getattr(self, attr)
            if value is None:
                continue
            pairs.append(
                (xml_name, _xml_bool(value) if isinstance(value, bool) else str(value))
            )
        return pairs

    def to_bytes(self) -> bytes:
        attrs = " ".join(
            f'{name}="{escape(value, {chr(34): "&quot;"})}"'
            for name, value in self.items()
        )
        return f"<MobileMsiData {attrs}></MobileMsiData>".encode("ascii")

    @classmethod
    def from_bytes(cls, data: bytes) -> MsiManifest:
        """Parse the binary manifest form.

        Raises:
            PackagingError: If the data is not a MobileMsiData element.
        """
        try:
            root = ET.fromstring(data)
        except ET.ParseError as err:
            raise PackagingError(f"Invalid MSI manifest: {err}") from err
        if root.tag != "MobileMsiData":
            raise PackagingError(f"Invalid MSI manifest root element: {root.tag}")

        values: dict[str, Any] = {}
        for xml_name, attr in _MANIFEST_FIELDS:
            raw = root.get(xml_name)
            if raw is None:
                continue
            if attr in ("execution_context", "upgrade_code"):
                values[attr] = raw
            else:
                values[attr] = raw.strip().lower() == "true"
        return cls(**values)


# -------------------------------
# App and content file
# -------------------------------


@dataclass(frozen=True)
class AppDescriptor:
    """The Graph mobile app a package belongs to.

    Attributes:
        odata_type: WIN32_LOB_APP or WINDOWS_MOBILE_MSI.
        display_name: App display name.
        file_name: Content file name (e.g. "Setup.intunewin" or "Setup.msi").
        publisher: Publisher, from MSI metadata when available.
        setup_file_path: Setup file inside the package (win32 apps only).
        msi_information: MSI metadata for win32 apps wrapping an MSI.
        run_as_account: "system" or "user" (win32 apps only).
        product_code: MSI product code (MSI apps only).
        product_version: MSI product version (MSI apps only).
        id: Graph id of an existing app to publish to, if known.
    """

    odata_type: str
    display_name: str
    file_name: str
    publisher: str | None = None
    setup_file_path: str | None = None
    msi_information: MsiInformation | None = None
    run_as_account: str | None = None
    product_code: str | None = None
    product_version: str | None = None
    id: str | None = None

    @property
    def app_type(self) -> str:
        """OData type without the leading '#', as used in URL segments."""
        return self.odata_type.lstrip("#")

    @property
    def is_msi_app(self) -> bool:
        return self.odata_type == WINDOWS_MOBILE_MSI

    @property
    def setup_file(self) -> str:
        """Setup file reported in the detection document."""
        if self.odata_type == WIN32_LOB_APP and self.setup_file_path:
            return self.setup_file_path
        return self.file_name

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"@odata.type": self.odata_type}
        if self.id:
            data["id"] = self.id
        data["displayName"] = self.display_name
        data["publisher"] = self.publisher
        data["fileName"] = self.file_name
        if self.is_msi_app:
            data["productCode"] = self.product_code
            data["productVersion"] = self.product_version
            data["identityVersion"] = self.product_version
        else:
            data["setupFilePath"] = self.setup_file_path
            data["msiInformation"] = (
                self.msi_information.to_dict() if self.msi_information else None
            )
            if self.run_as_account:
                data["installExperience"] = {"runAsAccount": self.run_as_account}
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AppDescriptor:
        try:
            odata_type = data["@odata.type"]
            display_name = data["displayName"]
            file_name = data["fileName"]
        except KeyError as err:
            raise PackagingError(f"app is missing field {err}") from err
        msi = data.get("msiInformation")
        experience = data.get("installExperience") or {}
        return cls(
            odata_type=odata_type,
            display_name=display_name,
            file_name=file_name,
            publisher=data.get("publisher"),
            setup_file_path=data.get("setupFilePath"),
            msi_information=MsiInformation.from_dict(msi) if msi else None,
            run_as_account=experience.get("runAsAccount"),
            product_code=data.get("productCode"),
            product_version=data.get("productVersion"),
            id=data.get("id"),
        )


@dataclass(frozen=True)
class ContentFileInfo:
    """Descriptor for the content file created in Intune.

    Attributes:
        name: File name reported to Intune.
        size: Plaintext size in bytes.
        size_encrypted: Container size in bytes (header + ciphertext).
        manifest: Optional binary manifest (MSI apps).
    """

    name: str
    size: int
    size_encrypted: int
    manifest: bytes | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "size": self.size,
            "sizeEncrypted": self.size_encrypted,
            "manifest": _b64(self.manifest) if self.manifest is not None else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContentFileInfo:
        try:
            manifest = data.get("manifest")
            return cls(
                name=data["name"],
                size=int(data["size"]),
                size_encrypted=int(data["sizeEncrypted"]),
                manifest=_unb64(manifest, "manifest") if manifest else None,
            )
        except KeyError as err:
            raise PackagingError(f"file is missing field {err}") from err


class Package:
    """An encrypted app package ready to be written or published.

    The package owns its data stream: closing the package (directly or by
    leaving a ``with`` block) closes the stream. The stream must be
    seekable.

    Attributes:
        app: App descriptor.
        envelope: Encryption envelope for the container.
        file: Content-file descriptor.
        data: Seekable stream holding the container bytes.
    """

    def __init__(
        self,
        app: AppDescriptor,
        envelope: EncryptionEnvelope,
        file: ContentFileInfo,
        data: BinaryIO,
    ) -> None:
        self.app = app
        self.envelope = envelope
        self.file = file
        self.data = data

    def __enter__(self) -> Package:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        if self.data is not None and not self.data.closed:
            self.data.close()

    def to_dict(self) -> dict[str, Any]:
        """Serialize the non-stream fields (companion JSON layout)."""
        return {
            "app": self.app.to_dict(),
            "encryptionInfo": self.envelope.to_dict(),
            "file": self.file.to_dict(),
        }


# -------------------------------
# Remote content file
# -------------------------------


class UploadState(str, Enum):
    """Graph mobileAppContentFileUploadState values."""

    SUCCESS = "success"
    TRANSIENT_ERROR = "transientError"
    ERROR = "error"
    UNKNOWN = "unknown"
    AZURE_STORAGE_URI_REQUEST_SUCCESS = "azureStorageUriRequestSuccess"
    AZURE_STORAGE_URI_REQUEST_PENDING = "azureStorageUriRequestPending"
    AZURE_STORAGE_URI_REQUEST_FAILED = "azureStorageUriRequestFailed"
    AZURE_STORAGE_URI_REQUEST_TIMED_OUT = "azureStorageUriRequestTimedOut"
    AZURE_STORAGE_URI_RENEWAL_SUCCESS = "azureStorageUriRenewalSuccess"
    AZURE_STORAGE_URI_RENEWAL_PENDING = "azureStorageUriRenewalPending"
    AZURE_STORAGE_URI_RENEWAL_FAILED = "azureStorageUriRenewalFailed"
    AZURE_STORAGE_URI_RENEWAL_TIMED_OUT = "azureStorageUriRenewalTimedOut"
    COMMIT_FILE_SUCCESS = "commitFileSuccess"
    COMMIT_FILE_PENDING = "commitFilePending"
    COMMIT_FILE_FAILED = "commitFileFailed"
    COMMIT_FILE_TIMED_OUT = "commitFileTimedOut"

    @classmethod
    def parse(cls, value: Any) -> UploadState:
        """Map a raw Graph value to a state, falling back to UNKNOWN."""
        if isinstance(value, str):
            for state in cls:
                if state.value.lower() == value.lower():
                    return state
        return cls.UNKNOWN


FAILURE_STATES = frozenset(
    {
        UploadState.AZURE_STORAGE_URI_REQUEST_FAILED,
        UploadState.AZURE_STORAGE_URI_REQUEST_TIMED_OUT,
        UploadState.AZURE_STORAGE_URI_RENEWAL_FAILED,
        UploadState.AZURE_STORAGE_URI_RENEWAL_TIMED_OUT,
        UploadState.COMMIT_FILE_FAILED,
        UploadState.COMMIT_FILE_TIMED_OUT,
    }
)


@dataclass(frozen=True)
class ContentFileRef:
    """Address of one content file within an app's content version."""

    app_id: str
    app_type: str
    content_version_id: str
    file_id: str

    @property
    def path(self) -> str:
        """Path relative to the mobileApps collection."""
        return (
            f"{self.app_id}/{self.app_type}/contentVersions/"
            f"{self.content_version_id}/files/{self.file_id}"
        )


@dataclass(frozen=True)
class ContentFile:
    """Snapshot of a remote content file as returned by Graph."""

    id: str
    upload_state: UploadState
    azure_storage_uri: str | None = None
    azure_storage_uri_expiration: str | None = None
    is_committed: bool = False
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContentFile:
        return cls(
            id=str(data.get("id", "")),
            upload_state=UploadState.parse(data.get("uploadState")),
            azure_storage_uri=data.get("azureStorageUri"),
            azure_storage_uri_expiration=data.get("azureStorageUriExpirationDateTime"),
            is_committed=bool(data.get("isCommitted", False)),
            raw=data,
        )
