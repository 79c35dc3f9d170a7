# Copyright: (c) 2024, Jordan Borean (@jborean93) <jborean93@gmail.com>
# MIT License (see LICENSE or https://opensource.org/licenses/MIT)

from __future__ import annotations

import logging
import typing as t
from urllib.parse import urlparse

import requests
from requests.auth import AuthBase

from .._exceptions import AuthenticationError
from ._providers import AuthProvider

log = logging.getLogger(__name__)


class HTTPWinRMAuth(AuthBase):
    """Requests auth handler for an AuthProvider.

    Drives the challenge response exchange of an auth provider over a
    requests connection. Each 401 response is fed into the provider and the
    request is resent with the new Authorization header until the provider
    is done, the server stops returning 401, or max_rounds is reached.

    Args:
        provider: The auth provider for this connection.
        max_rounds: The maximum number of challenge rounds to process.
        allow_insecure: Allow a provider that requires HTTPS to send its
            credentials over plain HTTP.
    """

    def __init__(
        self,
        provider: AuthProvider,
        *,
        max_rounds: int = 5,
        allow_insecure: bool = False,
    ) -> None:
        if max_rounds < 1:
            raise ValueError(f"max_rounds must be 1 or greater, got {max_rounds}")

        self.provider = provider
        self.max_rounds = max_rounds
        self.allow_insecure = allow_insecure

    def __call__(
        self,
        request: requests.PreparedRequest,
    ) -> requests.PreparedRequest:
        scheme = urlparse(request.url or "").scheme.lower()
        if self.provider.requires_https and scheme != "https":
            if not self.allow_insecure:
                raise AuthenticationError(
                    f"{self.provider.name} authentication requires HTTPS, set allow_insecure=True to send the "
                    "credentials over HTTP"
                )
            log.warning("Sending %s credentials over an unencrypted HTTP connection", self.provider.name)

        header = self.provider.initial_auth_header()
        if header:
            request.headers["Authorization"] = header

        request.headers["Connection"] = "Keep-Alive"
        request.register_hook("response", self.response_hook)

        return request

    def response_hook(
        self,
        response: requests.Response,
        **kwargs: t.Any,
    ) -> requests.Response:
        if response.status_code == 401:
            response = self.handle_401(response, **kwargs)

        return response

    def handle_401(
        self,
        response: requests.Response,
        **kwargs: t.Any,
    ) -> requests.Response:
        rounds = 0
        while response.status_code == 401 and rounds < self.max_rounds:
            challenge = response.headers.get("www-authenticate", "")
            header = self.provider.process_challenge(challenge)
            if header is None:
                log.debug("%s auth provider has no further token, stopping authentication", self.provider.name)
                break

            # consume content and release the original connection to allow the
            # new request to reuse the same one.
            response.content
            response.raw.release_conn()

            request = response.request.copy()
            request.headers["Authorization"] = header
            log.debug("Sending http request with new %s auth token", self.provider.name)

            new_response = response.connection.send(request, **kwargs)
            new_response.history.append(response)
            response = new_response
            rounds += 1

        if response.status_code == 401:
            log.debug("Authentication with %s failed after %d rounds", self.provider.name, rounds)

        return response
