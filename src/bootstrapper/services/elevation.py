"""Rendezvous between the orchestrator and the operator supplying a credential."""

import asyncio
import logging
from typing import Optional, Union

from pydantic import SecretStr

from bootstrapper.models.errors import AlreadyPending, AlreadyResolved, UnknownOrStaleRequest
from bootstrapper.models.session import PrivilegeRequest


class PrivilegeChannel:
    """Correlated request/response handshake for elevated-privilege credentials.

    At most one request is outstanding. A request is resolved either by a
    matching submission (with credential) or by cancellation/timeout (without
    credential); late submissions for the latter are rejected as stale. The
    channel hands the secret to exactly one waiter and keeps no copy.
    """

    def __init__(self):
        self.logger = logging.getLogger("bootstrapper.elevation")
        self._pending: Optional[PrivilegeRequest] = None
        self._future: Optional[asyncio.Future] = None
        # request id -> True if resolved with a credential, False otherwise
        self._resolved: dict[str, bool] = {}

    @property
    def pending(self) -> Optional[PrivilegeRequest]:
        """The outstanding request, if any."""
        return self._pending

    def request_credential(self) -> PrivilegeRequest:
        """Open a new credential request.

        Raises:
            AlreadyPending: If another request is still outstanding
        """
        if self._pending is not None:
            raise AlreadyPending(self._pending.id)

        request = PrivilegeRequest()
        self._pending = request
        self._future = asyncio.get_running_loop().create_future()
        self.logger.info(f"Credential requested: request_id={request.id}")
        return request

    async def wait_for_credential(self, request_id: str) -> SecretStr:
        """Suspend until the credential for ``request_id`` is submitted.

        Cancelling the waiter resolves the request without credential.

        Raises:
            UnknownOrStaleRequest: If ``request_id`` is not outstanding
        """
        request = self._pending
        if request is None or request.id != request_id:
            raise UnknownOrStaleRequest(request_id)

        future = self._future
        try:
            return await future
        finally:
            if not request.resolved:
                self._discard(request, "abandoned")
            if self._future is future:
                self._future = None

    def submit_credential(self, request_id: str, secret: Union[str, SecretStr]) -> None:
        """Deliver the credential for the outstanding request.

        Raises:
            AlreadyResolved: If ``request_id`` already received its credential
            UnknownOrStaleRequest: If ``request_id`` is unknown, superseded or cancelled
        """
        if self._resolved.get(request_id) is True:
            raise AlreadyResolved(request_id)

        request = self._pending
        if request is None or request.id != request_id:
            self.logger.warning(f"Rejected credential for stale request_id={request_id}")
            raise UnknownOrStaleRequest(request_id)

        if not isinstance(secret, SecretStr):
            secret = SecretStr(secret)

        request.resolved = True
        self._resolved[request.id] = True
        self._pending = None
        if self._future is not None and not self._future.done():
            self._future.set_result(secret)
        self.logger.info(f"Credential received: request_id={request.id}")

    def cancel(self, request_id: Optional[str] = None) -> bool:
        """Resolve the outstanding request without credential.

        Returns:
            True if a request was cancelled
        """
        request = self._pending
        if request is None or (request_id is not None and request.id != request_id):
            return False
        self._discard(request, "cancelled")
        if self._future is not None and not self._future.done():
            self._future.cancel()
        return True

    def _discard(self, request: PrivilegeRequest, reason: str) -> None:
        request.resolved = True
        self._resolved[request.id] = False
        if self._pending is request:
            self._pending = None
        self.logger.info(f"Credential request {reason}: request_id={request.id}")
