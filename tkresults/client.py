"""Client settings: authentication tokens, TLS roots and local port selection."""

from __future__ import annotations

import socket
import ssl
from dataclasses import dataclass, field, replace
from typing import Callable, Optional

TokenRequester = Callable[[str, str], str]
"""Creates a token for the service account ``(namespace, name)``."""


class ServiceAccountTokenError(RuntimeError):
    """A token could not be obtained for the configured service account."""


@dataclass
class ServiceAccount:
    namespace: str = ""
    name: str = ""


@dataclass
class SSLConfig:
    roots_file_path: str = ""
    server_name_override: str = ""


@dataclass
class ClientConfig:
    """Settings for connecting to the results API."""

    address: str = ""
    token: str = ""
    ssl: SSLConfig = field(default_factory=SSLConfig)
    service_account: Optional[ServiceAccount] = None
    portforward: bool = True
    insecure: bool = False
    use_v1alpha2: bool = False


class Factory:
    """Builds what a results API client needs from a :class:`ClientConfig`.

    A service account given by name only takes ``default_namespace``.
    """

    def __init__(
        self,
        cfg: Optional[ClientConfig] = None,
        token_requester: Optional[TokenRequester] = None,
        default_namespace: str = "",
    ) -> None:
        if cfg is not None:
            account = cfg.service_account
            if account is not None and account.name and not account.namespace:
                cfg = replace(cfg, service_account=replace(account, namespace=default_namespace))
        self.cfg = cfg
        self._token_requester = token_requester

    def token(self) -> str:
        """Return the bearer token: the configured one, else a service account's, else ``""``."""
        if self.cfg is None:
            return ""
        if self.cfg.token:
            return self.cfg.token
        account = self.cfg.service_account
        if account is not None:
            if self._token_requester is None:
                raise ServiceAccountTokenError(
                    "error getting service account token: no token requester configured"
                )
            try:
                return self._token_requester(account.namespace, account.name)
            except Exception as err:
                raise ServiceAccountTokenError(f"error getting service account token: {err}") from err
        return ""

    def certs(self) -> ssl.SSLContext:
        """Return a TLS context trusting the system roots plus the configured roots file.

        Raises OSError if the file cannot be read and ValueError if it holds no certificate.
        """
        context = ssl.create_default_context()
        path = self.cfg.ssl.roots_file_path if self.cfg is not None else ""
        if path:
            with open(path, "rb") as handle:
                data = handle.read()
            try:
                context.load_verify_locations(cadata=data.decode("ascii", errors="replace"))
            except ssl.SSLError as err:
                raise ValueError("unable to add cert to pool") from err
        return context


def pick_free_port() -> int:
    """Ask the system for a free TCP port on localhost."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("localhost", 0))
        return sock.getsockname()[1]