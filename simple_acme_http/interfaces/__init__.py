# Copyright 2025 Jared Hendrickson
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""Interfaces of the collaborators ACMEService relies on."""
import os
import typing

from ..messages import ChallengeProof, Response


class Transport(typing.Protocol):
    """
    Signs and sends requests to the CA. Implementations own nonce handling and resolve resource tags (e.g. `new-reg`)
    to directory URLs. When several issuance flows share one transport, it must handle concurrent nonce usage.
    """

    async def post(self, resource_or_url: str, payload: dict) -> Response:
        ...

    async def get(self, url: str) -> Response:
        ...


class ChallengePublisher(typing.Protocol):
    """Makes the challenge proof retrievable by the CA at the well-known path of `domain`."""

    async def provide(self, domain: str, token: str, proof: ChallengeProof) -> None:
        ...


class CertificateStore(typing.Protocol):
    """Locates the local certificate file of a domain."""

    def path_for(self, domain: str) -> typing.Union[str, os.PathLike]:
        ...
