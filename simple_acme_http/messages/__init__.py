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
"""Protocol messages exchanged with the CA: request variants, responses and resource models."""
import json
from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence, Union

from acme import challenges
from acme import messages


class AcmeResource:
    """Resource type tags sent in the `resource` field of each request payload."""
    # pylint: disable=too-few-public-methods
    NEW_REGISTRATION = 'new-reg'
    REGISTRATION = 'reg'
    NEW_AUTHORIZATION = 'new-authz'
    AUTHORIZATION = 'authz'


STATUS_PENDING = messages.STATUS_PENDING.name
STATUS_VALID = messages.STATUS_VALID.name
STATUS_INVALID = messages.STATUS_INVALID.name
IDENTIFIER_DNS = messages.IDENTIFIER_FQDN.name
HTTP01 = challenges.HTTP01.typ


class Response:
    """
    A CA response as returned by the signed transport. Header names are case-insensitive and each header may carry
    several values.
    """

    def __init__(self, status: int, headers: Mapping[str, Union[str, Sequence[str]]] = None, body: str = '') -> None:
        """
        Args:
            status (int): The HTTP status code.
            headers (dict): Header names mapped to a value or a list of values.
            body (str): The UTF-8 decoded response body.
        """
        self.status = status
        self.body = body
        self._headers = {}

        for name, values in (headers or {}).items():
            values = [values] if isinstance(values, str) else list(values)
            self._headers.setdefault(name.lower(), []).extend(values)

    def has_header(self, name: str) -> bool:
        """Checks whether at least one value exists for the header `name`."""
        return bool(self._headers.get(name.lower()))

    def header(self, name: str) -> Optional[str]:
        """Returns the first value of header `name`, or None when the header is absent."""
        values = self.header_values(name)
        return values[0] if values else None

    def header_values(self, name: str) -> list:
        """Returns every value of header `name`."""
        return list(self._headers.get(name.lower(), []))

    def json(self):
        """
        Decodes the response body.

        Raises:
            json.JSONDecodeError: When the body is not valid JSON.
        """
        return json.loads(self.body) if self.body else {}

    def __repr__(self) -> str:
        return f"Response(status={self.status}, headers={self._headers!r})"


@dataclass(frozen=True)
class NewRegistration:
    """Creates an account for the signing key."""
    contact: tuple = ()
    agreement: Optional[str] = None
    resource = AcmeResource.NEW_REGISTRATION

    def to_json(self) -> dict:
        payload = {'resource': self.resource, 'contact': list(self.contact)}
        if self.agreement:
            payload['agreement'] = self.agreement
        return payload


@dataclass(frozen=True)
class Registration(NewRegistration):
    """Re-sends the registration to an existing account resource."""
    resource = AcmeResource.REGISTRATION


@dataclass(frozen=True)
class NewAuthorization:
    """Requests an authorization for one DNS identifier."""
    domain: str
    resource = AcmeResource.NEW_AUTHORIZATION

    def to_json(self) -> dict:
        return {'resource': self.resource, 'identifier': {'type': IDENTIFIER_DNS, 'value': self.domain}}


@dataclass(frozen=True)
class ChallengeAnswer:
    """Tells the CA that the challenge response is in place and can be validated."""
    type: str
    token: str
    key_authorization: str
    resource = AcmeResource.AUTHORIZATION

    def to_json(self) -> dict:
        return {
            'resource': self.resource,
            'type': self.type,
            'token': self.token,
            'keyAuthorization': self.key_authorization
        }


@dataclass(frozen=True)
class Challenge:
    """A single way of proving control of a domain offered by the CA."""
    type: str
    token: str
    status: str = STATUS_PENDING
    uri: Optional[str] = None

    @classmethod
    def from_json(cls, data: dict) -> 'Challenge':
        return cls(
            type=data.get('type', ''),
            token=data.get('token', ''),
            status=data.get('status', STATUS_PENDING),
            uri=data.get('uri', data.get('url'))
        )


@dataclass(frozen=True)
class Authorization:
    """
    The CA's proof-of-control record for one domain. `combinations` holds lists of indices into `challenges`; each
    list is a set of challenges that satisfies the authorization when completed together. None means the CA did not
    send any combinations.
    """
    location: Optional[str]
    identifier: str
    status: str
    challenges: tuple = ()
    combinations: Optional[tuple] = None

    @classmethod
    def from_json(cls, data: dict, location: str = None) -> 'Authorization':
        combinations = data.get('combinations')
        return cls(
            location=location,
            identifier=(data.get('identifier') or {}).get('value', ''),
            status=data.get('status', STATUS_PENDING),
            challenges=tuple(Challenge.from_json(chall) for chall in data.get('challenges') or []),
            combinations=tuple(tuple(combo) for combo in combinations) if combinations is not None else None
        )


@dataclass(frozen=True)
class RegistrationRecord:
    """The account registration as known by the CA."""
    contact: tuple = ()
    agreement: Optional[str] = None
    location: Optional[str] = None
    key: dict = field(default=None, compare=False, hash=False)

    @classmethod
    def from_json(cls, data: dict, location: str = None) -> 'RegistrationRecord':
        return cls(
            contact=tuple(data.get('contact') or ()),
            agreement=data.get('agreement'),
            location=location,
            key=data.get('key')
        )


@dataclass(frozen=True)
class ChallengeProof:
    """A compact JWS binding a challenge token to the account key."""
    token: str
    jws: str

    def __str__(self) -> str:
        return self.jws
