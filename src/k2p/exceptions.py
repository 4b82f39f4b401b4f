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
Errors raised while generating a policy.

Every error aborts the whole run. None of them is retried.
"""
from typing import Optional


class PolicyGenerationError(Exception):
    """Base class for all policy generation failures."""


class ConfigurationError(PolicyGenerationError):
    """The infra data or rules file is missing or invalid."""


class UnsupportedResourceKindError(PolicyGenerationError):
    """The document kind has no handler."""

    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(f"Unsupported resource kind: {kind}")


class UnsupportedVolumeKindError(PolicyGenerationError):
    """A volume uses a source type the resolver cannot express."""

    def __init__(self, volume: str, kind: Optional[str] = None):
        self.volume = volume
        self.kind = kind
        super().__init__(
            f"Unsupported volume type {kind or '<none>'} for volume {volume!r}"
        )


class ImageResolutionError(PolicyGenerationError):
    """Image metadata or layers could not be obtained for an image."""

    def __init__(self, image: str, reason: str):
        self.image = image
        self.reason = reason
        super().__init__(f"Failed to resolve image {image!r}: {reason}")


class MalformedFieldError(PolicyGenerationError):
    """A field of a known resource kind is unknown or invalid."""

    def __init__(self, resource: str, field: str, reason: str = "unsupported field"):
        self.resource = resource
        self.field = field
        super().__init__(f"{resource}: {reason}: {field}")


class AnnotationPathError(PolicyGenerationError):
    """A metadata path does not resolve inside a document."""

    def __init__(self, path: str, segment: str):
        self.path = path
        self.segment = segment
        super().__init__(f"Cannot resolve {segment!r} of metadata path {path!r}")


class PolicyConsistencyError(PolicyGenerationError):
    """Generated policies do not line up with the resources they belong to."""
