"""What-if simulation sessions anchored to a decision.

A session is a stateful multi-turn conversation with the reasoning provider,
primed with the decision's framing and, optionally, one of the scenarios the
analysis produced. Sessions live in memory only.
"""

import asyncio
from collections import OrderedDict
from enum import Enum
from uuid import uuid4

from config import get_settings
from models.errors import (
    ProviderUnavailableError,
    SessionNotFoundError,
    StateError,
    ValidationError,
)
from models.schemas import Decision, SimulationView, Speaker, TranscriptEntry
from services.llm import ChatHandle, LLMClient, get_llm_client
from utils.logging import get_logger

logger = get_logger(__name__)


class SessionState(str, Enum):
    ACTIVE = "active"
    DEGRADED = "degraded"
    ENDED = "ended"


OPENING_TURN = "Begin the simulation. Set the scene for me based on the scenario."
EMPTY_OPENING_REPLY = "Simulation ready. What would you like to do?"
START_FAILURE_MESSAGE = (
    "Failed to connect to the simulation engine. "
    "Send a message to try again, or end the simulation."
)
SEND_FAILURE_MESSAGE = (
    "Connection interrupted. Your last message did not reach the simulation; "
    "you can send it again."
)

# Provider failures that degrade a session instead of ending the flow
_TRANSIENT_FAILURES = (ProviderUnavailableError, TimeoutError, ConnectionError)


def build_system_framing(decision: Decision, scenario: str | None = None) -> str:
    """Fixed framing sent as the system prompt of every simulation."""
    emotions = ", ".join(e.value for e in decision.emotions)
    options = ", ".join(decision.options)
    if scenario:
        focus = f'FOCUS SCENARIO: The user wants to simulate the specific path: "{scenario}".'
    else:
        focus = "The user wants to explore potential outcomes generically."

    return f"""You are a decision simulation engine.

USER DECISION CONTEXT:
Title: "{decision.title}"
Description: "{decision.description}"
Context: "{decision.context}"
Current Emotions: "{emotions}"
Options Considered: "{options}"

{focus}

YOUR ROLE:
1. Act as the environment of the future that results from this decision, not as an assistant.
2. Immerse the user in the consequences of their choice, in the second person ("You are...").
3. If the scenario involves conflict, roleplay the counter-party realistically.
4. If the scenario is internal, roleplay the internal monologue of their future self.
5. Be realistic. Do not sugarcoat high risks or ignore benefits.
6. Keep responses conversational (usually under 120 words).
7. Always end with a question or a new development that asks the user to choose or reflect."""


def resolve_scenario(decision: Decision, scenario: str | None) -> str | None:
    """Check that a requested scenario is one the decision's analysis produced."""
    if scenario is None or not scenario.strip():
        return None

    scenario = scenario.strip()
    available = decision.analysis.scenarios if decision.analysis else []
    if scenario not in available:
        raise ValidationError(
            "Scenario is not one of the decision's simulated paths",
            details={"decision_id": decision.id, "available": available},
        )
    return scenario


class SimulationSession:
    """One multi-turn exploration of a decision.

    The transcript always starts with an assistant entry and alternates
    user/assistant afterwards. Turns are strictly sequential: a send issued
    while another is pending is rejected rather than queued.
    """

    def __init__(
        self,
        decision_id: str,
        handle: ChatHandle,
        scenario: str | None = None,
        owner_id: str | None = None,
        session_id: str | None = None,
    ):
        self.id = session_id or str(uuid4())
        self.decision_id = decision_id
        self.owner_id = owner_id
        self.scenario = scenario
        self.state = SessionState.ACTIVE
        self.transcript: list[TranscriptEntry] = []
        self._handle = handle
        self._in_flight = False

    @classmethod
    async def start(
        cls,
        decision: Decision,
        scenario: str | None = None,
        llm: LLMClient | None = None,
    ) -> "SimulationSession":
        """Open a session and let the assistant set the scene.

        Raises:
            ValidationError: If the scenario is not one of the analysis' scenarios
        """
        scenario = resolve_scenario(decision, scenario)
        llm = llm or get_llm_client()
        handle = llm.open_chat(build_system_framing(decision, scenario))
        session = cls(decision.id, handle, scenario=scenario, owner_id=decision.user_id)

        session._in_flight = True
        try:
            reply = await handle.send(OPENING_TURN)
        except asyncio.CancelledError:
            handle.close()
            raise
        except _TRANSIENT_FAILURES as e:
            session._degrade(START_FAILURE_MESSAGE, e)
        else:
            session._append(Speaker.ASSISTANT, reply or EMPTY_OPENING_REPLY)
        finally:
            session._in_flight = False

        logger.info(
            "Simulation session started",
            extra={
                "session_id": session.id,
                "decision_id": decision.id,
                "scenario": scenario,
                "state": session.state.value,
            },
        )
        return session

    @property
    def is_pending(self) -> bool:
        return self._in_flight

    def _append(self, speaker: Speaker, text: str) -> None:
        self.transcript.append(TranscriptEntry(speaker=speaker, text=text))

    def _degrade(self, message: str, error: Exception) -> str:
        logger.warning(
            f"Simulation turn failed: {type(error).__name__}: {error}",
            extra={"session_id": self.id, "decision_id": self.decision_id},
        )
        self.state = SessionState.DEGRADED
        self._append(Speaker.ASSISTANT, message)
        return message

    def _ensure_open(self) -> None:
        if self.state is SessionState.ENDED:
            raise StateError(
                "Simulation session has ended", details={"session_id": self.id}
            )

    async def send(self, user_text: str) -> str:
        """Send one user turn and return the assistant reply.

        A provider failure yields a synthetic assistant reply and marks the
        session DEGRADED; the next send may be attempted normally.

        Raises:
            ValidationError: Empty message
            StateError: Session ended, or another turn is still pending
        """
        self._ensure_open()
        if not user_text or not user_text.strip():
            raise ValidationError("message must not be empty", details={"field": "text"})
        if self._in_flight:
            raise StateError(
                "A turn is already in flight for this session",
                details={"session_id": self.id},
            )

        text = user_text.strip()
        self._in_flight = True
        try:
            reply = await self._handle.send(text)
        except _TRANSIENT_FAILURES as e:
            self._ensure_open()
            self._append(Speaker.USER, text)
            return self._degrade(SEND_FAILURE_MESSAGE, e)
        finally:
            self._in_flight = False

        if self.state is SessionState.ENDED:
            logger.info(
                "Dropping reply that arrived after the session ended",
                extra={"session_id": self.id},
            )
            self._ensure_open()

        self._append(Speaker.USER, text)
        self._append(Speaker.ASSISTANT, reply)
        self.state = SessionState.ACTIVE
        return reply

    def end(self) -> None:
        """Discard provider-side state. Safe to call more than once."""
        if self.state is SessionState.ENDED:
            return
        self.state = SessionState.ENDED
        self._handle.close()
        logger.info(
            "Simulation session ended",
            extra={"session_id": self.id, "turns": len(self.transcript)},
        )

    def view(self) -> SimulationView:
        return SimulationView(
            session_id=self.id,
            decision_id=self.decision_id,
            scenario=self.scenario,
            state=self.state.value,
            transcript=list(self.transcript),
        )


class SimulationManager:
    """In-memory registry of live sessions, scoped by owner.

    Oldest sessions are ended and evicted once the configured cap is reached.
    """

    def __init__(self, llm: LLMClient | None = None, max_sessions: int | None = None):
        self._llm = llm
        self.max_sessions = max_sessions or get_settings().simulation_max_sessions
        self._sessions: OrderedDict[str, SimulationSession] = OrderedDict()

    def __len__(self) -> int:
        return len(self._sessions)

    async def open(self, decision: Decision, scenario: str | None = None) -> SimulationSession:
        session = await SimulationSession.start(decision, scenario=scenario, llm=self._llm)
        self._sessions[session.id] = session

        while len(self._sessions) > self.max_sessions:
            _, evicted = self._sessions.popitem(last=False)
            evicted.end()
            logger.info("Evicted oldest simulation session", extra={"session_id": evicted.id})

        return session

    def get(self, owner_id: str, session_id: str) -> SimulationSession:
        session = self._sessions.get(session_id)
        if session is None or session.owner_id != owner_id:
            raise SessionNotFoundError(session_id)
        return session

    async def send(self, owner_id: str, session_id: str, text: str) -> str:
        return await self.get(owner_id, session_id).send(text)

    def end(self, owner_id: str, session_id: str) -> None:
        session = self.get(owner_id, session_id)
        session.end()
        del self._sessions[session_id]

    def end_for_decision(self, owner_id: str, decision_id: str) -> int:
        """End every session opened on a decision, e.g. once it is deleted."""
        stale = [
            session_id
            for session_id, session in self._sessions.items()
            if session.owner_id == owner_id and session.decision_id == decision_id
        ]
        for session_id in stale:
            self._sessions.pop(session_id).end()
        return len(stale)

    def end_all(self) -> None:
        while self._sessions:
            _, session = self._sessions.popitem(last=False)
            session.end()


_simulation_manager: SimulationManager | None = None


def get_simulation_manager() -> SimulationManager:
    global _simulation_manager
    if _simulation_manager is None:
        _simulation_manager = SimulationManager()
    return _simulation_manager


def close_simulation_manager() -> None:
    """End every live session; called on shutdown."""
    global _simulation_manager
    if _simulation_manager is not None:
        _simulation_manager.end_all()
        _simulation_manager = None
