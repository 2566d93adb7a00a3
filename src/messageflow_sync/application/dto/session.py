from __future__ import annotations

from dataclasses import dataclass

from messageflow_sync.domain.value_objects.credential import Credential

CSRF_HEADER = "X-CSRF-Token"
TENANT_HEADER = "X-Tenant-ID"


@dataclass(slots=True)
class SessionContext:
    """Per-client authentication state, owned by the composing application.

    Lives exactly as long as the pairing controller it belongs to; there is
    no module-level token cache.
    """

    tenant_id: int
    credential: Credential | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.credential is not None

    def bind(self, credential: Credential) -> None:
        self.credential = credential
        if credential.tenant_id is not None:
            self.tenant_id = credential.tenant_id

    def clear(self) -> None:
        self.credential = None

    def headers(self, *, mutating: bool = False) -> dict[str, str]:
        if self.credential is None:
            return {TENANT_HEADER: str(self.tenant_id)}
        headers = {"Authorization": f"Bearer {self.credential.token}"}
        if mutating and self.credential.csrf:
            headers[CSRF_HEADER] = self.credential.csrf
        return headers
