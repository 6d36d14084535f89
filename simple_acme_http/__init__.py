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
"""
simple_acme_http is an asyncio ACME client core for the HTTP-01 challenge. It registers an account, requests an
authorization for a domain, signs and publishes the challenge response, then waits for the CA to decide. Signing and
sending requests, serving the challenge files and storing certificates are left to small pluggable collaborators.
"""
import asyncio
import datetime
import enum
import json
import logging
import pathlib
from dataclasses import dataclass

import OpenSSL
import josepy as jose
import validators
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives.asymmetric import rsa, ec
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
    load_pem_private_key,
)

from . import errors
from . import interfaces
from . import messages
from . import tools
from .messages import AcmeResource, Authorization, Challenge, ChallengeProof, RegistrationRecord, Response


# Constants and Variables
MINIMUM_WAIT = 1
__pdoc__ = {"tests": False}    # Excludes 'tests' submodule from documentation
logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccountKeyPair:
    """
    PEM encoded key material of an ACME account. Every protocol message and challenge proof is signed with it.
    """
    private_key: bytes
    public_key: bytes

    @classmethod
    def generate(cls, key_type: str = 'rsa2048') -> 'AccountKeyPair':
        """
        Generates a new RSA or EC account key pair. Only RSA keys can sign challenge proofs.

        Args:
            key_type (str): The requested key type. Options are: [`rsa2048`, `rsa4096`, `ec256`, `ec384`]

        Returns:
            simple_acme_http.AccountKeyPair: The new key pair.

        Raises:
            simple_acme_http.errors.InvalidKeyType: When an unknown/unsupported `key_type` is requested.

        Examples:
            >>> key_pair = simple_acme_http.AccountKeyPair.generate(key_type="rsa4096")
        """
        if key_type == 'rsa2048':
            key = rsa.generate_private_key(public_exponent=65537, key_size=2048, backend=default_backend())
        elif key_type == 'rsa4096':
            key = rsa.generate_private_key(public_exponent=65537, key_size=4096, backend=default_backend())
        elif key_type == 'ec256':
            key = ec.generate_private_key(ec.SECP256R1(), default_backend())
        elif key_type == 'ec384':
            key = ec.generate_private_key(ec.SECP384R1(), default_backend())
        # Otherwise, the requested key type is not supported. Throw an error
        else:
            options = ['rsa2048', 'rsa4096', 'ec256', 'ec384']
            msg = f"Invalid account key type '{key_type}'. Options {options}"
            raise errors.InvalidKeyType(msg)

        return cls.from_pem(key.private_bytes(
            encoding=Encoding.PEM,
            format=PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=NoEncryption()
        ))

    @classmethod
    def from_pem(cls, private_key: bytes) -> 'AccountKeyPair':
        """
        Builds a key pair from a PEM encoded private key, deriving the public half.

        Raises:
            simple_acme_http.errors.UnsupportedKeyType: When `private_key` cannot be loaded.
        """
        key = cls._load(private_key)
        public_key = key.public_key().public_bytes(Encoding.PEM, PublicFormat.SubjectPublicKeyInfo)
        return cls(private_key=private_key, public_key=public_key)

    def load_private_key(self):
        """Returns the `cryptography` private key object of this pair."""
        return self._load(self.private_key)

    @staticmethod
    def _load(private_key: bytes):
        try:
            return load_pem_private_key(private_key, password=None, backend=default_backend())
        except (TypeError, ValueError) as exc:
            raise errors.UnsupportedKeyType(f"Account key could not be loaded: {exc}") from exc


class _RegistrationState(enum.Enum):
    CREATING = 'creating'
    FETCHING = 'fetching'


class ACMEService:
    """
    Drives one domain at a time through registration, HTTP-01 authorization and status polling. The service holds no
    mutable state, so one instance can run several issuance flows concurrently as independent tasks.
    """
    # pylint: disable=too-many-arguments

    def __init__(
            self,
            transport: interfaces.Transport,
            account_key: AccountKeyPair,
            publisher: interfaces.ChallengePublisher = None,
            store: interfaces.CertificateStore = None,
            minimum_wait: int = MINIMUM_WAIT,
            sleep=asyncio.sleep,
            clock=None
    ):
        """
        Args:
            transport (simple_acme_http.interfaces.Transport): Signs and sends requests to the CA.
            account_key (simple_acme_http.AccountKeyPair): The account key used to sign challenge proofs.
            publisher (simple_acme_http.interfaces.ChallengePublisher): Makes challenge proofs retrievable by the CA.
                Required by `issue_certificate()`.
            store (simple_acme_http.interfaces.CertificateStore): Locates local certificate files. Required by
                `has_valid_certificate()`.
            minimum_wait (int): The least amount of time (in seconds) to wait between two status polls.
            sleep (coroutine function): Suspends the polling task for a number of seconds.
            clock (callable): Returns the current time as an aware datetime. Defaults to the current UTC time.

        Examples:
            >>> import simple_acme_http
            >>> service = simple_acme_http.ACMEService(
            ...     transport=my_signed_transport,
            ...     account_key=simple_acme_http.AccountKeyPair.generate(),
            ...     publisher=simple_acme_http.tools.WebrootChallengePublisher("/var/www/html"),
            ...     store=simple_acme_http.tools.FileCertificateStore("/etc/ssl/acme")
            ... )
        """
        self.transport = transport
        self.account_key = account_key
        self.publisher = publisher
        self.store = store
        self.minimum_wait = minimum_wait
        self.sleep = sleep
        self.clock = clock or self._utcnow

    async def issue_certificate(self, domain: str, contact: list, agreement: str = None) -> None:
        """
        Proves control of `domain` to the CA. Each step depends on the result of the previous one, so they run
        strictly in order. The flow can be aborted at any time by cancelling the task running it.

        Args:
            domain (str): The domain name to authorize.
            contact (list): Contact email addresses for the account registration.
            agreement (str): The URL of the CA's subscriber agreement being accepted, if any.

        Raises:
            simple_acme_http.errors.NoSuitableChallenge: When the CA offers no challenge this client can solve.
            simple_acme_http.errors.ChallengeInvalidated: When the CA rejects the challenge response.
            simple_acme_http.errors.InvalidConfiguration: When the service was created without a publisher.

        Examples:
            >>> asyncio.run(service.issue_certificate("test.example.com", ["user@example.com"]))
        """
        if self.publisher is None:
            raise errors.InvalidConfiguration("A challenge publisher is required to issue certificates.")

        await self.register(contact, agreement)

        location, authorization = await self.request_authorization(domain)
        challenge = self.select_challenge(authorization)

        if challenge is None:
            msg = f"Couldn't find any combination of challenges for '{domain}' which this client can solve."
            raise errors.NoSuitableChallenge(msg)

        proof = self.sign_challenge(challenge.token)
        await self.publisher.provide(domain, challenge.token, proof)

        await self.submit_challenge(location, challenge, proof)
        await self.poll_until_decided(location)
        logger.info("Authorization for %s is valid", domain)

    async def register(self, contact: list, agreement: str = None) -> RegistrationRecord:
        """
        Registers the account key with the CA. Registering a key the CA already knows is safe: the existing account
        is fetched from the location the CA points to and returned instead.

        Args:
            contact (list): Contact email addresses, with or without the `mailto:` prefix.
            agreement (str): The URL of the CA's subscriber agreement being accepted, if any.

        Returns:
            simple_acme_http.messages.RegistrationRecord: The account registration as known by the CA.

        Raises:
            simple_acme_http.errors.InvalidContact: When a contact is not a valid email address.
            simple_acme_http.errors.ProtocolViolation: When a conflict response carries no location header.
            simple_acme_http.errors.UnexpectedStatus: When the CA answers with any other status code.
        """
        contact = tuple(self.validate_contact(value) for value in contact or [])
        state = _RegistrationState.CREATING
        target = AcmeResource.NEW_REGISTRATION

        while True:
            if state is _RegistrationState.CREATING:
                response = await self._post(target, messages.NewRegistration(contact=contact, agreement=agreement))

                if response.status == 201:
                    logger.info("Registered new account at %s", response.header('location'))
                    return RegistrationRecord.from_json(self._decode(response), response.header('location'))

                if response.status == 409:
                    if not response.has_header('location'):
                        msg = "Protocol violation: 409 Conflict response didn't carry any location header."
                        raise errors.ProtocolViolation(msg)

                    target = response.header('location')
                    state = _RegistrationState.FETCHING
                    logger.debug("Account already exists, fetching registration from %s", target)
                    continue
            else:
                response = await self._post(target, messages.Registration(contact=contact, agreement=agreement))

                if response.status in (200, 202):
                    logger.info("Using existing account at %s", target)
                    return RegistrationRecord.from_json(self._decode(response), target)

            raise errors.UnexpectedStatus(f"Invalid response code: {response.status}", response.status)

    async def request_authorization(self, domain: str) -> tuple:
        """
        Requests a new authorization for `domain`.

        Returns:
            tuple: The authorization location and the simple_acme_http.messages.Authorization object.

        Raises:
            simple_acme_http.errors.InvalidDomain: When `domain` is not a valid FQDN.
            simple_acme_http.errors.ProtocolViolation: When the response carries no location header.
            simple_acme_http.errors.UnexpectedStatus: When the CA answers with any status code other than 200.
        """
        if not validators.domain(domain):
            msg = f"Invalid domain name '{domain}'. Domain name must adhere to RFC2181."
            raise errors.InvalidDomain(msg)

        response = await self._post(AcmeResource.NEW_AUTHORIZATION, messages.NewAuthorization(domain=domain))

        if response.status != 200:
            raise errors.UnexpectedStatus(f"Invalid response code: {response.status}", response.status)

        if not response.has_header('location'):
            raise errors.ProtocolViolation("Protocol violation: no location header in authorization response.")

        location = response.header('location')
        return location, Authorization.from_json(self._decode(response), location)

    @staticmethod
    def select_challenge(authorization: Authorization):
        """
        Picks the challenge to solve for an authorization: the first HTTP-01 challenge that satisfies the
        authorization on its own.

        Returns:
            simple_acme_http.messages.Challenge: The selected challenge, or None if no challenge qualifies.
        """
        indices = tools.find_suitable_challenges(authorization)

        if not indices:
            logger.info("No suitable challenge in authorization %s", authorization.location)
            return None

        challenge = authorization.challenges[indices[0]]
        logger.info("Selected %s challenge %s", challenge.type, challenge.token)
        return challenge

    def sign_challenge(self, token: str) -> ChallengeProof:
        """
        Signs a challenge token with the account key. The proof embeds the account's public key so the CA can check
        it belongs to the account that requested the authorization.

        Args:
            token (str): The challenge token. Must only contain `A-Z`, `a-z`, `0-9`, `_` and `-`.

        Returns:
            simple_acme_http.messages.ChallengeProof: The compact serialized RS256 JWS.

        Raises:
            simple_acme_http.errors.ProtocolViolation: When the token contains any other character.
            simple_acme_http.errors.UnsupportedKeyType: When the account key is not an RSA key.
        """
        tools.validate_token(token)
        key = self.account_key.load_private_key()

        if not isinstance(key, rsa.RSAPrivateKey):
            raise errors.UnsupportedKeyType("Only RSA account keys are supported right now.")

        payload = json.dumps({'keyAuthorization': token}).encode()
        jws = jose.JWS.sign(
            payload,
            key=jose.JWKRSA(key=key),
            alg=jose.RS256,
            include_jwk=True,
            protect=frozenset(['alg', 'jwk'])
        )

        return ChallengeProof(token=token, jws=jws.to_compact().decode())

    async def submit_challenge(self, location: str, challenge: Challenge, proof: ChallengeProof) -> Challenge:
        """
        Tells the CA the challenge response is published and ready to be validated.

        Returns:
            simple_acme_http.messages.Challenge: The updated challenge, usually still `pending`.

        Raises:
            simple_acme_http.errors.UnexpectedStatus: When the CA answers with any status code other than 200.
        """
        answer = messages.ChallengeAnswer(type=challenge.type, token=challenge.token, key_authorization=str(proof))
        response = await self._post(location, answer)

        if response.status != 200:
            raise errors.UnexpectedStatus(f"Invalid response code: {response.status}", response.status)

        data = {'type': challenge.type, 'token': challenge.token, 'uri': challenge.uri}
        data.update(self._decode(response))
        return Challenge.from_json(data)

    async def poll_until_decided(self, location: str) -> None:
        """
        Polls the authorization at `location` until the CA marks it as valid or invalid, waiting as long as the CA's
        Retry-After header asks for between two polls. There is no retry limit, wrap the call in `asyncio.wait_for()`
        to enforce a deadline.

        Raises:
            simple_acme_http.errors.ChallengeInvalidated: When the CA marks the authorization as invalid.
            simple_acme_http.errors.ProtocolViolation: When a pending response has no Retry-After header, or the CA
                reports an unknown status.
            simple_acme_http.errors.UnexpectedStatus: When a poll is answered with an error status code.
        """
        while True:
            response = await self.transport.get(location)
            logger.debug("GET %s -> %s", location, response.status)

            if response.status not in (200, 202):
                raise errors.UnexpectedStatus(f"Invalid response code: {response.status}", response.status)

            data = self._decode(response)
            status = data.get('status')

            if status == messages.STATUS_PENDING:
                if not response.has_header('retry-after'):
                    raise errors.ProtocolViolation("Protocol violation: no Retry-After header on pending status.")

                wait = tools.parse_retry_after(response.header('retry-after'), now=self.clock())
                wait = max(wait, self.minimum_wait)
                logger.info("Authorization %s is pending, polling again in %d seconds", location, wait)
                await self.sleep(wait)
            elif status == messages.STATUS_INVALID:
                detail = self._error_detail(data)
                logger.warning("Authorization %s was marked as invalid: %s", location, detail)
                raise errors.ChallengeInvalidated("Challenge marked as invalid.", location=location, detail=detail)
            elif status == messages.STATUS_VALID:
                return
            else:
                raise errors.ProtocolViolation(f"Protocol violation: invalid challenge status {status!r}.")

    def has_valid_certificate(self, domain: str) -> bool:
        """
        Checks whether a usable certificate for `domain` is stored locally. The stored file must hold a certificate
        listing `domain` in its common name or subject alternative names, its private key and must not be expired.

        Returns:
            bool: True if the stored certificate can be used, False otherwise. A missing, unreadable, unparsable or
                mismatched certificate is never an error.

        Raises:
            simple_acme_http.errors.InvalidConfiguration: When the service was created without a certificate store.

        Examples:
            >>> service.has_valid_certificate("test.example.com")
            True
        """
        if self.store is None:
            raise errors.InvalidConfiguration("A certificate store is required to check local certificates.")

        path = pathlib.Path(self.store.path_for(domain))

        # Over-long names and unreadable directories fail in is_file() too
        try:
            if not path.is_file():
                return False
            raw = path.read_bytes()
        except OSError:
            logger.debug("Could not read certificate file %s", path)
            return False

        if not raw:
            return False

        try:
            record = tools.parse_certificate(raw)
        except (OpenSSL.crypto.Error, ValueError):
            logger.debug("Could not parse certificate file %s", path)
            return False

        if not record.has_private_key:
            return False

        if domain.lower() not in record.names:
            return False

        if record.not_valid_after <= self.clock():
            return False

        return True

    @staticmethod
    def validate_contact(value: str) -> str:
        """
        Validates a registration contact and returns it as a `mailto:` URI.

        Raises:
            simple_acme_http.errors.InvalidContact: When `value` is not a valid email address.
        """
        address = value[len('mailto:'):] if value.startswith('mailto:') else value

        if not validators.email(address):
            msg = f"Value '{value}' is not a valid email address."
            raise errors.InvalidContact(msg)

        return f"mailto:{address}"

    async def _post(self, resource_or_url: str, request) -> Response:
        response = await self.transport.post(resource_or_url, request.to_json())
        logger.debug("POST %s (%s) -> %s", resource_or_url, request.resource, response.status)
        return response

    @staticmethod
    def _decode(response: Response) -> dict:
        try:
            data = response.json()
        except ValueError as exc:
            raise errors.ProtocolViolation(f"Protocol violation: response body is not valid JSON: {exc}") from exc

        if not isinstance(data, dict):
            raise errors.ProtocolViolation("Protocol violation: response body is not a JSON object.")

        return data

    @staticmethod
    def _error_detail(data: dict):
        errors_found = [data.get('error')] + [chall.get('error') for chall in data.get('challenges') or []]

        for error in errors_found:
            if isinstance(error, dict) and error.get('detail'):
                return error['detail']

        return None

    @staticmethod
    def _utcnow() -> datetime.datetime:
        return datetime.datetime.now(datetime.timezone.utc)
