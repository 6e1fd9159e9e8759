from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .manager import NetworkManager

logger = logging.getLogger("nodrivernet.Cookie")


class Cookie:
    """one browser cookie record as returned by `Network.getCookies`.

    identity for delete/modify is `(name, domain, path)`, same as the
    browser's own cookie jar. mutations go through the owning `NetworkManager`.

    :param manager: the manager that fetched this cookie.
    :param cookie: raw protocol cookie dict.
    """

    def __init__(self, manager: NetworkManager, cookie: dict):
        self._manager = manager
        self._cookie = dict(cookie)

    @property
    def name(self) -> str:
        return self._cookie.get("name")

    @property
    def value(self) -> str:
        return self._cookie.get("value")

    @property
    def domain(self) -> str | None:
        return self._cookie.get("domain")

    @property
    def path(self) -> str | None:
        return self._cookie.get("path")

    @property
    def expires(self) -> float | None:
        return self._cookie.get("expires")

    @property
    def size(self) -> int | None:
        return self._cookie.get("size")

    @property
    def http_only(self) -> bool:
        return bool(self._cookie.get("httpOnly", False))

    @property
    def secure(self) -> bool:
        return bool(self._cookie.get("secure", False))

    @property
    def session(self) -> bool:
        return bool(self._cookie.get("session", False))

    @property
    def same_site(self) -> str | None:
        return self._cookie.get("sameSite")

    @property
    def identity(self) -> tuple[str, str | None, str | None]:
        return (self.name, self.domain, self.path)

    async def delete(self, for_url: str | None = None):
        """delete this cookie from the browser."""
        await self._manager.delete_cookie(self, for_url)

    async def update(self, **modifications) -> bool:
        """set a modified copy of this cookie and mirror it locally on success.

        keyword names are protocol names (`value`, `expires`, `httpOnly`, ...).

        :return: whether the browser accepted the cookie.
        """
        params = {
            key: self._cookie[key]
            for key in ("name", "value", "domain", "path", "expires", "httpOnly", "secure", "sameSite")
            if self._cookie.get(key) is not None
        }
        # session cookies report expires=-1, which setCookie rejects
        if self.session:
            params.pop("expires", None)
        params.update(modifications)
        success = await self._manager.set_cookie(params)
        if success:
            self._cookie.update(modifications)
        else:
            logger.debug("browser rejected modification of cookie %s: %s", self.identity, modifications)
        return success

    def to_dict(self) -> dict:
        return dict(self._cookie)

    def __eq__(self, other):
        if not isinstance(other, Cookie):
            return NotImplemented
        return self.identity == other.identity and self.value == other.value

    def __hash__(self):
        return hash(self.identity)

    def __repr__(self):
        return f"<Cookie {self.name}={self.value!r} domain={self.domain!r} path={self.path!r}>"


__all__ = ["Cookie"]
