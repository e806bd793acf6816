import logging
from typing import Any

import requests

from app.domain.exceptions import DeviceError, NotFoundError

logger = logging.getLogger(__name__)


class HubActuatorClient:
    """
    Reads and writes device capabilities through the home hub's REST API.

    Attributes:
        base_url (str): Root of the hub API, e.g. ``http://hub.local/api``.
        timeout (float): Per-request timeout in seconds.

    Methods:
        set_capability(): Write one capability value of a device.
        get_actuator(): Read a device and its current capability values.
        get_zone(): Read a zone's activity flags (used for inactivity).
    """

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = 5.0,
        session: requests.Session | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    def set_capability(self, actuator_id: str, capability: str, value: Any) -> None:
        """Write ``value`` to ``capability``; raises :class:`DeviceError` on failure."""
        url = f"{self.base_url}/devices/{actuator_id}/capabilities/{capability}"
        self._request("PUT", url, json={"value": value})
        logger.debug("Wrote %s=%s to %s", capability, value, actuator_id)

    def get_actuator(self, actuator_id: str) -> dict[str, Any]:
        """Return ``{"id", "name", "capabilities": {name: value}}`` for a device."""
        data = self._request("GET", f"{self.base_url}/devices/{actuator_id}")
        capabilities = data.get("capabilities") or {}
        # Some hubs nest the value: {"onoff": {"value": true}}
        flattened = {
            name: (entry.get("value") if isinstance(entry, dict) else entry) for name, entry in capabilities.items()
        }
        return {"id": data.get("id", actuator_id), "name": data.get("name"), "capabilities": flattened}

    def get_zone(self, zone_name: str) -> dict[str, Any]:
        return self._request("GET", f"{self.base_url}/zones/{zone_name}")

    def _request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
            if response.status_code == 404:
                raise NotFoundError(f"Hub resource not found: {url}")
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise DeviceError(f"Hub request {method} {url} failed: {e}", detail={"url": url}) from e

        if not response.content:
            return {}
        return response.json()
