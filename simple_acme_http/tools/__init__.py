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
"""Parsing helpers and file-backed collaborators to assist ACME verification."""
import asyncio
import datetime
import email.utils
import logging
import math
import pathlib
import re
from dataclasses import dataclass

import OpenSSL
from acme import challenges
from cryptography import x509
from cryptography.x509.oid import NameOID

from .. import errors
from ..messages import HTTP01, Authorization, ChallengeProof

logger = logging.getLogger(__name__)

TOKEN_PATTERN = re.compile(r'^[A-Za-z0-9_-]+$')
PRIVATE_KEY_PATTERN = re.compile(rb'-----BEGIN ([A-Z]+ )?PRIVATE KEY-----')
RETRY_AFTER_SECONDS_PATTERN = re.compile(r'^[0-9]+$')


def validate_token(token: str) -> str:
    """
    Ensures a challenge token only contains URL-safe base64 characters before it is signed or written anywhere.

    Raises:
        simple_acme_http.errors.ProtocolViolation: When the token is empty or contains any other character.
    """
    if not isinstance(token, str) or not TOKEN_PATTERN.match(token):
        raise errors.ProtocolViolation(f"Protocol violation: invalid challenge token {token!r}.")

    return token


def parse_retry_after(value: str, now: datetime.datetime = None) -> int:
    """
    Converts a Retry-After header value into a number of seconds to wait.

    Args:
        value (str): Either a number of seconds (`120`) or an HTTP-date (`Wed, 21 Oct 2015 07:28:00 GMT`).
        now (datetime.datetime): The current time as an aware datetime. Defaults to the current UTC time.

    Returns:
        int: The seconds to wait. Dates in the past yield 0.

    Raises:
        simple_acme_http.errors.ProtocolViolation: When the value is neither a number nor a date.
    """
    value = (value or '').strip()

    if RETRY_AFTER_SECONDS_PATTERN.match(value):
        return int(value)

    try:
        when = email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        when = None

    if when is None:
        raise errors.ProtocolViolation(f"Protocol violation: invalid Retry-After header {value!r}.")

    # Dates with a -0000 zone come back naive, they are still UTC
    if when.tzinfo is None:
        when = when.replace(tzinfo=datetime.timezone.utc)

    now = now or datetime.datetime.now(datetime.timezone.utc)
    return max(math.ceil((when - now).total_seconds()), 0)


def find_suitable_challenges(authorization: Authorization) -> list:
    """
    Finds the challenges of an authorization this client can solve on their own.

    Only HTTP-01 challenges qualify, and only when the CA lists a combination consisting of exactly that challenge.
    An authorization without any combinations offers no such challenge.

    Returns:
        list: Indices into `authorization.challenges`, in their original order.
    """
    candidates = [index for index, chall in enumerate(authorization.challenges) if chall.type == HTTP01]

    combinations = authorization.combinations or ()
    return [index for index in candidates if (index,) in combinations]


@dataclass(frozen=True)
class CertificateRecord:
    """The parts of a stored certificate needed to decide whether it is still usable."""
    common_name: str
    names: tuple
    not_valid_after: datetime.datetime
    has_private_key: bool


def parse_names(common_name: str, alt_names: list) -> list:
    """Combines the subject common name and the subject alternative DNS names into one lower-cased list."""
    names = [common_name] if common_name else []
    names.extend(name.strip() for name in alt_names if name and name.strip())
    return [name.lower() for name in names]


def parse_certificate(raw: bytes) -> CertificateRecord:
    """
    Parses PEM data holding a certificate and, possibly, its private key.

    Raises:
        OpenSSL.crypto.Error: When no certificate can be loaded from `raw`.
    """
    cert = OpenSSL.crypto.load_certificate(OpenSSL.crypto.FILETYPE_PEM, raw).to_cryptography()

    common_names = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    common_name = str(common_names[0].value) if common_names else ''

    try:
        alt_names = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        dns_names = alt_names.get_values_for_type(x509.DNSName)
    except x509.ExtensionNotFound:
        dns_names = []

    return CertificateRecord(
        common_name=common_name,
        names=tuple(parse_names(common_name, dns_names)),
        not_valid_after=cert.not_valid_after_utc,
        has_private_key=bool(PRIVATE_KEY_PATTERN.search(raw))
    )


class FileCertificateStore:
    """Keeps one PEM file per domain inside a directory."""

    def __init__(self, directory: str, filename: str = '{domain}.pem') -> None:
        """
        Args:
            directory (str): The directory holding the certificate files.
            filename (str): The file name template. `{domain}` is replaced with the lower-cased domain name.
        """
        self.directory = pathlib.Path(directory)
        self.filename = filename

    def path_for(self, domain: str) -> pathlib.Path:
        return self.directory.joinpath(self.filename.format(domain=domain.lower()))


class WebrootChallengePublisher:
    """
    Publishes challenge proofs as static files below a webroot that is served over HTTP for the challenged domain,
    i.e. at `<webroot>/.well-known/acme-challenge/<token>`.
    """

    def __init__(self, webroot: str) -> None:
        self.webroot = pathlib.Path(webroot)

    def path_for(self, token: str) -> pathlib.Path:
        """Returns the file path a proof for `token` is written to."""
        return self.webroot.joinpath(challenges.HTTP01.URI_ROOT_PATH, validate_token(token))

    async def provide(self, domain: str, token: str, proof: ChallengeProof) -> None:
        path = self.path_for(token)
        await asyncio.to_thread(self._write, path, proof)
        logger.debug("Published challenge proof for %s at %s", domain, path)

    @staticmethod
    def _write(path: pathlib.Path, proof: ChallengeProof) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, 'w', encoding='utf-8') as proof_file:
            proof_file.write(str(proof))

    def cleanup(self, token: str) -> None:
        """Removes a previously published proof, if present."""
        try:
            self.path_for(token).unlink()
        except FileNotFoundError:
            pass
