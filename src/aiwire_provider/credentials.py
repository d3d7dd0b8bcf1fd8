from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass

from .config import Credential
from .vendors import VENDORS


@dataclass(frozen=True)
class ResolvedCredential:
    vendor: str
    api_key: str
    model: str
    index: int | None = None
    label: str = ""


@dataclass(frozen=True)
class ProviderStatus:
    label: str
    active: bool
    key_count: int


class CredentialSelector:
    """
    Picks the API key (and default model) for a vendor.

    Precedence: explicit key, explicit index, configured default index (only
    for the configured default vendor), then the first enabled key. Returning
    None means "no usable key", which is a normal outcome and not an error.
    """

    def __init__(
        self,
        credentials: Mapping[str, Sequence[Credential]],
        *,
        default_vendor: str = "anthropic",
        default_key_index: int | None = None,
    ):
        self._credentials = {vendor: tuple(keys) for vendor, keys in credentials.items()}
        self._default_vendor = default_vendor or "anthropic"
        self._default_key_index = default_key_index

    @property
    def default_vendor(self) -> str:
        return self._default_vendor

    def keys_for(self, vendor: str) -> tuple[Credential, ...]:
        return self._credentials.get(vendor, ())

    def enabled_credentials(self, vendor: str) -> Iterator[tuple[int, Credential]]:
        for index, cred in enumerate(self.keys_for(vendor)):
            if cred.usable:
                yield index, cred

    def _resolved(self, vendor: str, index: int, cred: Credential) -> ResolvedCredential:
        return ResolvedCredential(
            vendor=vendor,
            api_key=cred.key,
            model=cred.model or VENDORS[vendor].default_model,
            index=index,
            label=cred.label,
        )

    def resolve(
        self,
        vendor: str,
        explicit_key: str | None = None,
        explicit_index: int | None = None,
    ) -> ResolvedCredential | None:
        spec = VENDORS.get(vendor)
        if spec is None:
            return None

        if explicit_key:
            return ResolvedCredential(vendor=vendor, api_key=explicit_key, model=spec.default_model)

        keys = self.keys_for(vendor)

        if explicit_index is not None:
            if not 0 <= explicit_index < len(keys) or not keys[explicit_index].key:
                return None
            return self._resolved(vendor, explicit_index, keys[explicit_index])

        idx = self._default_key_index
        if idx is not None and vendor == self._default_vendor and 0 <= idx < len(keys) and keys[idx].usable:
            return self._resolved(vendor, idx, keys[idx])

        for index, cred in self.enabled_credentials(vendor):
            return self._resolved(vendor, index, cred)
        return None

    def status(self) -> dict[str, ProviderStatus]:
        return {
            name: ProviderStatus(
                label=spec.label,
                active=any(c.enabled for c in self.keys_for(name)),
                key_count=len(self.keys_for(name)),
            )
            for name, spec in VENDORS.items()
        }
