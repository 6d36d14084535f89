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

import asyncio
import logging

import simple_acme_http

DOMAIN = "test.example.com"


async def main(transport):
    """Authorizes DOMAIN unless a valid certificate for it is already stored."""
    service = simple_acme_http.ACMEService(
        transport=transport,
        account_key=simple_acme_http.AccountKeyPair.generate(key_type="rsa2048"),
        publisher=simple_acme_http.tools.WebrootChallengePublisher("/var/www/html"),
        store=simple_acme_http.tools.FileCertificateStore("/etc/ssl/acme"),
    )

    if service.has_valid_certificate(DOMAIN):
        print(f"{DOMAIN} already has a valid certificate")
        return

    # Give up if the CA has not decided within 10 minutes
    try:
        await asyncio.wait_for(service.issue_certificate(DOMAIN, ["user@example.com"]), timeout=600)
    except simple_acme_http.errors.ChallengeInvalidated as exc:
        print(f"Failed to authorize {DOMAIN}: {exc.detail}")
        raise SystemExit(1)

    print(f"{DOMAIN} is authorized")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)

    # [ !!! REPLACE WITH YOUR SIGNED TRANSPORT. IT MUST PROVIDE ASYNC post() AND get() METHODS !!! ]
    my_transport = None
    asyncio.run(main(my_transport))
