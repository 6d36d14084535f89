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
"""Custom exception classes for simple_acme_http."""


class ACMEError(Exception):
    """Base class for every error raised by simple_acme_http."""
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ProtocolViolation(ACMEError):
    """Error occurs when a CA response breaks the protocol contract (missing header, unknown status, bad token)"""


class UnexpectedStatus(ACMEError):
    """Error occurs when the CA answers with an HTTP status code outside the expected success set"""
    def __init__(self, message: str, status: int) -> None:
        super().__init__(message)
        self.status = status


class NoSuitableChallenge(ACMEError):
    """Error occurs when no challenge offered by the CA can be solved alone with HTTP-01"""


class UnsupportedKeyType(ACMEError):
    """Error occurs when the account key cannot be used to sign challenge responses"""


class ChallengeInvalidated(ACMEError):
    """Error occurs when the CA marks the challenge as invalid. A new authorization is required to retry."""
    def __init__(self, message: str, location: str = None, detail: str = None) -> None:
        super().__init__(message)
        self.location = location
        self.detail = detail


class InvalidKeyType(ACMEError):
    """Error occurs when the requested account key type is unknown"""


class InvalidDomain(ACMEError):
    """Error occurs when an authorization is requested for a value that is not a valid FQDN"""


class InvalidContact(ACMEError):
    """Error occurs when a registration contact is not a valid email address"""


class InvalidConfiguration(ACMEError):
    """Error occurs when an operation needs a collaborator the service was created without"""
