"""
Async client for the ElderCare REST API.

Request helpers never raise on HTTP or transport failures: they log the
problem and return None, leaving the caller to show a generic error.
"""
import logging
import os
from datetime import datetime
from typing import Any, List, NamedTuple, Optional

import httpx

from appointment_schedule import classify_appointments, select_nearest_appointment

logger = logging.getLogger(__name__)


class AppointmentOverview(NamedTuple):
    upcoming: List[dict]
    past: List[dict]
    nearest: Optional[dict]
    loaded: bool


class CareApiClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: float = 8.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = (base_url or os.environ.get("ELDERCARE_API_URL", "")).rstrip("/")
        self.token = token
        self.timeout = timeout
        self.transport = transport

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _request(self, method: str, path: str, payload: Any = None) -> Any:
        url = f"{self.base_url}/api{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as http_client:
                response = await http_client.request(method, url, json=payload, headers=self._headers())
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error(f"{method} {path} failed with {exc.response.status_code}: {exc.response.text[:240]}")
            return None
        except httpx.HTTPError as exc:
            logger.error(f"{method} {path} failed: {exc}")
            return None

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            logger.error(f"{method} {path} returned a non-JSON body")
            return None

    async def get(self, path: str) -> Any:
        return await self._request("GET", path)

    async def post(self, path: str, payload: Any = None) -> Any:
        return await self._request("POST", path, payload if payload is not None else {})

    async def put(self, path: str, payload: Any = None) -> Any:
        return await self._request("PUT", path, payload if payload is not None else {})

    async def delete(self, path: str) -> Any:
        return await self._request("DELETE", path)

    # ---- appointments ----

    async def get_appointments(self) -> List[dict]:
        return await self.get("/appointments") or []

    async def save_appointment(self, doctor_id: str, location_id: str, date: str, time: str) -> Optional[dict]:
        return await self.post("/appointments", {
            "doctor_id": doctor_id,
            "location_id": location_id,
            "date": date,
            "time": time
        })

    async def confirm_appointment(self, appointment_id: str) -> bool:
        return await self.put(f"/appointments/confirmed/{appointment_id}", {"confirmed": True}) is not None

    async def reschedule_appointment(self, appointment_id: str, new_date: str, new_time: str) -> bool:
        result = await self.put(f"/appointments/{appointment_id}", {"date": new_date, "time": new_time})
        return result is not None

    async def cancel_appointment(self, appointment_id: str) -> bool:
        return await self.delete(f"/appointments/{appointment_id}") is not None

    async def load_appointment_overview(self, now: Optional[datetime] = None) -> AppointmentOverview:
        """Fetch appointments and split them for the home and appointments views."""
        appointments = await self.get("/appointments")
        if appointments is None:
            return AppointmentOverview(upcoming=[], past=[], nearest=None, loaded=False)

        reference = now or datetime.now()
        partition = classify_appointments(appointments, now=reference)
        return AppointmentOverview(
            upcoming=partition.upcoming,
            past=partition.past,
            nearest=select_nearest_appointment(partition.upcoming, now=reference),
            loaded=True
        )

    # ---- reference data ----

    async def get_doctors(self) -> List[dict]:
        return await self.get("/doctors") or []

    async def get_specialties(self) -> List[str]:
        return await self.get("/doctors/specialties") or []

    async def get_doctors_by_specialty(self, specialty: str) -> List[dict]:
        return [d for d in await self.get_doctors() if d.get("specialty") == specialty]

    async def get_locations(self) -> List[dict]:
        return await self.get("/locations") or []
