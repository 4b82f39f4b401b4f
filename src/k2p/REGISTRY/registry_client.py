# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
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

"""
Anonymous registry client for image manifests, configs and layer blobs.
Implements the read side of the Docker Registry HTTP API V2.
"""

import hashlib
import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from .image_reference import ImageReference

logger = logging.getLogger(__name__)

MANIFEST_LIST_TYPES = (
    "application/vnd.docker.distribution.manifest.list.v2+json",
    "application/vnd.oci.image.index.v1+json",
)

MANIFEST_TYPES = (
    "application/vnd.docker.distribution.manifest.v2+json",
    "application/vnd.oci.image.manifest.v1+json",
) + MANIFEST_LIST_TYPES

GZIP_LAYER_TYPES = (
    "application/vnd.docker.image.rootfs.diff.tar.gzip",
    "application/vnd.oci.image.layer.v1.tar+gzip",
)

PLATFORM_OS = "linux"
PLATFORM_ARCHITECTURE = "amd64"

CHUNK_SIZE = 1024 * 1024

_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')


class RegistryError(Exception):
    """A registry request failed or returned unusable content."""


class RegistryClient:
    """
    Client for pulling image metadata and layers from OCI-compatible registries.
    Only anonymous pulls are supported.
    """

    def __init__(self, timeout: int = 60):
        """
        Initialize the registry client.

        Args:
            timeout: Socket timeout of each request, in seconds.
        """
        self.timeout = timeout
        self._auth_tokens: Dict[str, str] = {}

    def _request_token(self, challenge: str, ref: ImageReference) -> str:
        """Answer a `WWW-Authenticate: Bearer ...` challenge with an anonymous token."""
        scheme, _, params = challenge.partition(" ")
        if scheme.lower() != "bearer":
            raise RegistryError(f"Unsupported authentication scheme {scheme!r} for {ref.registry}")

        values = dict(_CHALLENGE_PARAM.findall(params))
        realm = values.pop("realm", None)
        if not realm:
            raise RegistryError(f"Authentication challenge of {ref.registry} has no realm")
        values.setdefault("scope", f"repository:{ref.repository}:pull")

        url = f"{realm}?{urlencode(values)}"
        logger.debug("Requesting anonymous token from %s", url)
        try:
            with urlopen(Request(url), timeout=self.timeout) as response:
                data = json.loads(response.read().decode())
        except (HTTPError, URLError, ValueError) as e:
            raise RegistryError(f"Failed to get a token for {ref.full_name}: {e}") from e

        token = data.get("token") or data.get("access_token")
        if not token:
            raise RegistryError(f"Token response for {ref.full_name} has no token")
        return f"Bearer {token}"

    def _open(self, url: str, ref: ImageReference, accept: Optional[str] = None):
        """Open a registry URL, answering one authentication challenge when needed."""
        cache_key = f"{ref.registry}/{ref.repository}"

        def build() -> Request:
            request = Request(url)
            if cache_key in self._auth_tokens:
                request.add_header("Authorization", self._auth_tokens[cache_key])
            if accept:
                request.add_header("Accept", accept)
            return request

        try:
            try:
                return urlopen(build(), timeout=self.timeout)
            except HTTPError as e:
                challenge = e.headers.get("WWW-Authenticate") if e.headers else None
                if e.code != 401 or not challenge:
                    raise
                e.close()
                self._auth_tokens[cache_key] = self._request_token(challenge, ref)
                return urlopen(build(), timeout=self.timeout)
        except HTTPError as e:
            raise RegistryError(f"GET {url} failed: HTTP {e.code} {e.reason}") from e
        except URLError as e:
            raise RegistryError(f"GET {url} failed: {e.reason}") from e

    def _get(self, url: str, ref: ImageReference, accept: Optional[str] = None) -> Tuple[bytes, Dict[str, str]]:
        with self._open(url, ref, accept) as response:
            return response.read(), dict(response.headers)

    def get_manifest(self, ref: ImageReference) -> Dict[str, Any]:
        """
        Get the linux/amd64 image manifest.

        Args:
            ref: Image reference

        Returns:
            Manifest as a dictionary
        """
        url = f"{ref.registry_url}/v2/{ref.repository}/manifests/{ref.reference}"
        logger.info("Pulling manifest of %s", ref.full_name)

        content, headers = self._get(url, ref, ", ".join(MANIFEST_TYPES))
        try:
            manifest = json.loads(content.decode())
        except ValueError as e:
            raise RegistryError(f"Invalid manifest for {ref.full_name}: {e}") from e

        media_type = manifest.get("mediaType") or headers.get("Content-Type", "")
        if media_type in MANIFEST_LIST_TYPES:
            manifest = self._select_platform_manifest(ref, manifest)

        logger.debug("Manifest of %s: %s", ref.full_name, json.dumps(manifest, indent=2))
        return manifest

    def _select_platform_manifest(self, ref: ImageReference, manifest_list: Dict[str, Any]) -> Dict[str, Any]:
        """Select the linux/amd64 entry of a manifest list."""
        for manifest in manifest_list.get("manifests", []):
            platform_info = manifest.get("platform", {})
            if platform_info.get("os") == PLATFORM_OS and platform_info.get("architecture") == PLATFORM_ARCHITECTURE:
                new_ref = ImageReference(registry=ref.registry, repository=ref.repository, digest=manifest["digest"])
                return self.get_manifest(new_ref)

        raise RegistryError(f"No {PLATFORM_OS}/{PLATFORM_ARCHITECTURE} manifest for {ref.full_name}")

    def get_config(self, ref: ImageReference, manifest: Dict[str, Any]) -> Dict[str, Any]:
        """
        Get the image configuration blob.

        Args:
            ref: Image reference
            manifest: Image manifest

        Returns:
            Image configuration as a dictionary
        """
        digest = manifest.get("config", {}).get("digest", "")
        if not digest:
            raise RegistryError(f"No config digest in manifest of {ref.full_name}")

        url = f"{ref.registry_url}/v2/{ref.repository}/blobs/{digest}"
        content, _ = self._get(url, ref)
        verify_digest(digest, hashlib.sha256(content).hexdigest())

        try:
            return json.loads(content.decode())
        except ValueError as e:
            raise RegistryError(f"Invalid config blob for {ref.full_name}: {e}") from e

    def pull_blob(self, ref: ImageReference, digest: str, dest: Path) -> Path:
        """
        Download a blob to a file, verifying its digest.

        Args:
            ref: Image reference
            digest: Blob digest from the manifest
            dest: Destination file

        Returns:
            The destination path
        """
        logger.info("Pulling layer %s", digest)
        url = f"{ref.registry_url}/v2/{ref.repository}/blobs/{digest}"

        sha256 = hashlib.sha256()
        with self._open(url, ref) as response, open(dest, "wb") as f:
            for chunk in iter(lambda: response.read(CHUNK_SIZE), b""):
                sha256.update(chunk)
                f.write(chunk)

        verify_digest(digest, sha256.hexdigest())
        return dest


def verify_digest(expected: str, actual_hex: str) -> None:
    algorithm, _, value = expected.partition(":")
    if algorithm != "sha256":
        raise RegistryError(f"Unsupported digest algorithm in {expected}")
    if value != actual_hex:
        raise RegistryError(f"Digest mismatch: expected {expected}, got sha256:{actual_hex}")
