"""
Archetype Flow
==============
Client-side sequencer for the archetype journey. Drives the API over
HTTP in the order the browser does:

    redirect params → confirm-auth → data-report → generate → generate-image
    → (optional) clear session

Four user-visible stages are *derived* from a single FlowState (which
artifacts exist, which step is in flight, whether an error is set):

    1. Device Connected      complete once confirm-auth succeeds
    2. Health Data Obtained  complete once a report is held
    3. Archetype Discovered  complete once both text and image are held
    4. Data Cleared          complete right after stage 3, or after the
                             DELETE call when ``clear_session`` is on

Each step runs at most once per flow, only when no step is in flight,
its own artifact is absent, and no error is set. Any non-2xx halts the
flow; stages already complete stay complete. No UI-level retries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Callable, Mapping, Optional

import httpx
from pydantic import BaseModel, ValidationError

from app.models.archetype import ArchetypeResult
from app.models.terra import HealthDataReport, WidgetSessionResponse

logger = logging.getLogger(__name__)


class StageStatus(str, Enum):
    IDLE = "idle"
    ONGOING = "ongoing"
    COMPLETE = "complete"
    ERROR = "error"


class Stage(IntEnum):
    DEVICE_CONNECTED = 0
    DATA_OBTAINED = 1
    ARCHETYPE_DISCOVERED = 2
    DATA_CLEARED = 3


STAGE_TITLES = {
    Stage.DEVICE_CONNECTED: "Device Connected",
    Stage.DATA_OBTAINED: "Health Data Obtained",
    Stage.ARCHETYPE_DISCOVERED: "Archetype Discovered",
    Stage.DATA_CLEARED: "Data Cleared",
}


class Step(str, Enum):
    CONFIRM_AUTH = "confirm_auth"
    DATA_REPORT = "data_report"
    ARCHETYPE = "archetype"
    IMAGE = "image"
    CLEAR = "clear"


class FlowError(Exception):
    """A step failed; ``str(exc)`` is the message shown to the user."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)


@dataclass
class FlowState:
    session_id: Optional[str] = None
    terra_user_id: Optional[str] = None
    auth_confirmed: bool = False
    report: Optional[HealthDataReport] = None
    archetype: Optional[ArchetypeResult] = None
    image_data_url: Optional[str] = None
    cleared: bool = False
    in_flight: Optional[Step] = None
    error: Optional[str] = None
    failed_step: Optional[Step] = None
    attempted: set[Step] = field(default_factory=set)


StatusListener = Callable[[list[StageStatus]], None]


class ArchetypeFlow:
    """Runs one archetype journey against the API behind *client*.

    *client* must be an ``httpx.AsyncClient`` whose ``base_url`` points at
    the API. *on_change* receives every new stage-status snapshot.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        clear_session: bool = False,
        on_change: Optional[StatusListener] = None,
    ) -> None:
        self._client = client
        self._clear_session = clear_session
        self._on_change = on_change
        self._last_snapshot: Optional[list[StageStatus]] = None
        self.state = FlowState()

    # ---- Before the redirect -------------------------------------------------

    async def initiate(self) -> WidgetSessionResponse:
        """Ask the API for a Terra widget URL. The caller sends the user there."""
        data = await self._request("POST", "/api/terra/initiate-widget", label="Initiate connection")
        widget = _parse(WidgetSessionResponse, data, "Initiate connection")
        if not widget.widget_url or not widget.session_id:
            raise FlowError("Widget URL or Session ID not received from server.")
        self.state.session_id = widget.session_id
        logger.info("Widget session %s ready, redirecting to Terra", widget.session_id)
        return widget

    # ---- After the redirect --------------------------------------------------

    def load_redirect(self, params: Mapping[str, str]) -> None:
        """Read ``sessionId`` / ``user_id`` / ``error`` from the redirect URL."""
        session_id = params.get("sessionId")
        terra_user_id = params.get("user_id")
        auth_error = params.get("error")

        if auth_error:
            self._fail(Step.CONFIRM_AUTH, f"Authentication failed: {auth_error}")
        elif session_id and terra_user_id:
            self.state.session_id = session_id
            self.state.terra_user_id = terra_user_id
        elif session_id:
            self._fail(Step.CONFIRM_AUTH, "Missing user ID from Terra redirect. Please try connecting again.")
        else:
            self._fail(Step.CONFIRM_AUTH, "No active session found. Please start from the beginning.")
        self._notify()

    async def run(self, params: Mapping[str, str]) -> FlowState:
        """Load the redirect, then advance until nothing is left to do."""
        self.load_redirect(params)
        while await self.advance():
            pass
        return self.state

    async def advance(self) -> bool:
        """Run the next eligible step. Returns False when none is eligible."""
        step = self.next_step()
        if step is None:
            return False
        await self._execute(step)
        return True

    def next_step(self) -> Optional[Step]:
        s = self.state
        if s.error or s.in_flight is not None:
            return None

        candidates = (
            (Step.CONFIRM_AUTH, bool(s.session_id and s.terra_user_id) and not s.auth_confirmed),
            (Step.DATA_REPORT, s.auth_confirmed and s.report is None),
            (Step.ARCHETYPE, s.report is not None and s.archetype is None),
            (Step.IMAGE, s.archetype is not None and s.image_data_url is None),
            (Step.CLEAR, self._clear_session and s.image_data_url is not None and not s.cleared),
        )
        for step, ready in candidates:
            if ready and step not in s.attempted:
                return step
        return None

    # ---- Stage status ----------------------------------------------------------

    def stage_statuses(self) -> list[StageStatus]:
        s = self.state

        def derive(complete: bool, steps: tuple[Step, ...], pending: bool = False) -> StageStatus:
            if complete:
                return StageStatus.COMPLETE
            if s.in_flight in steps or (pending and not s.error):
                return StageStatus.ONGOING
            if s.failed_step in steps:
                return StageStatus.ERROR
            return StageStatus.IDLE

        discovered = s.archetype is not None and s.image_data_url is not None
        cleared = discovered and not s.error and (s.cleared or not self._clear_session)

        return [
            derive(s.auth_confirmed, (Step.CONFIRM_AUTH,)),
            derive(s.report is not None, (Step.DATA_REPORT,)),
            derive(discovered, (Step.ARCHETYPE, Step.IMAGE), pending=s.archetype is not None),
            derive(cleared, (Step.CLEAR,)),
        ]

    # ---- Steps ------------------------------------------------------------------

    async def _execute(self, step: Step) -> None:
        s = self.state
        s.attempted.add(step)
        s.in_flight = step
        self._notify()
        try:
            await self._handlers[step](self)
        except FlowError as exc:
            logger.error("Flow step %s failed: %s", step.value, exc)
            s.error = str(exc)
            s.failed_step = step
        finally:
            s.in_flight = None
            self._notify()

    async def _confirm_auth(self) -> None:
        await self._request(
            "POST",
            "/api/terra/confirm-auth",
            json={"sessionId": self.state.session_id, "terraUserIdFromUrl": self.state.terra_user_id},
            label="Confirm auth",
        )
        self.state.auth_confirmed = True

    async def _fetch_report(self) -> None:
        data = await self._request(
            "GET", f"/api/terra/data-report/{self.state.session_id}", label="Data report fetch"
        )
        self.state.report = _parse(HealthDataReport, data, "Data report fetch")

    async def _generate_archetype(self) -> None:
        data = await self._request(
            "POST",
            "/api/archetype/generate",
            json={"sessionId": self.state.session_id},
            label="Archetype generation",
        )
        archetype = _parse(ArchetypeResult, data, "Archetype generation")
        if not archetype.image_prompt.strip():
            raise FlowError("Archetype response did not include an image prompt.")
        self.state.archetype = archetype

    async def _generate_image(self) -> None:
        data = await self._request(
            "POST",
            "/api/archetype/generate-image",
            json={"imagePrompt": self.state.archetype.image_prompt},
            label="Image generation",
        )
        image_url = data.get("imageUrl") if isinstance(data, dict) else None
        if not image_url:
            raise FlowError("Image data URL not received from server.")
        self.state.image_data_url = image_url
        self.state.archetype.image_data_url = image_url

    async def _clear(self) -> None:
        await self._request("DELETE", f"/api/terra/session/{self.state.session_id}", label="Data clearance")
        self.state.cleared = True

    _handlers = {
        Step.CONFIRM_AUTH: _confirm_auth,
        Step.DATA_REPORT: _fetch_report,
        Step.ARCHETYPE: _generate_archetype,
        Step.IMAGE: _generate_image,
        Step.CLEAR: _clear,
    }

    # ---- Helpers ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        url: str,
        *,
        label: str,
        json: Optional[dict[str, Any]] = None,
    ) -> Any:
        try:
            response = await self._client.request(method, url, json=json)
        except httpx.HTTPError as exc:
            raise FlowError(f"{label} failed: {exc}") from exc

        if not response.is_success:
            raise FlowError(_error_message(response, label), response.status_code)
        try:
            return response.json()
        except ValueError as exc:
            raise FlowError(f"{label} returned an invalid response.", response.status_code) from exc

    def _fail(self, step: Step, message: str) -> None:
        self.state.error = message
        self.state.failed_step = step

    def _notify(self) -> None:
        snapshot = self.stage_statuses()
        if snapshot == self._last_snapshot:
            return
        self._last_snapshot = snapshot
        if self._on_change:
            self._on_change(list(snapshot))


def _error_message(response: httpx.Response, label: str) -> str:
    """The server's ``detail.message`` verbatim, else a generic line."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        detail = body.get("detail")
        if isinstance(detail, dict) and detail.get("message"):
            return detail["message"]
        if isinstance(detail, str) and detail:
            return detail
        if body.get("error"):
            return str(body["error"])
    return f"{label} failed ({response.status_code})"


def _parse(model: type[BaseModel], data: Any, label: str) -> Any:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise FlowError(f"{label} returned an unexpected payload.") from exc
