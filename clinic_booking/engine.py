"""Conversation engine — one caller utterance in, one reply out.

The engine is a state machine over the tagged-union states in
``clinic_booking.models.state``.  ``handle_turn`` takes the call's current
state and the speech transcript and returns the next state plus an
``AgentReply`` (what to say and whether to keep listening, transfer to
staff or hang up).

Parsing, matching and prompt wording are pure functions.  The only
suspension points are collaborator calls, all made through ``_call`` which
applies the timeout and turns expiry into ``CollaboratorError``.  A
collaborator failure anywhere in a turn ends the engine's part of the call
with an apology and a transfer.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Awaitable, Callable, TypeVar

from dateutil.relativedelta import relativedelta

from clinic_booking.models.booking import (
    Appointment,
    AppointmentRequest,
    CallLogEntry,
    ConversationLogEntry,
)
from clinic_booking.models.directory import Clinic, Department, Doctor
from clinic_booking.models.state import (
    CompleteState,
    ConfirmationState,
    ConversationState,
    DateState,
    DepartmentState,
    DoctorState,
    GreetingState,
    NameState,
    TimeState,
    TransferState,
    advance,
)
from clinic_booking.nlu import (
    contains_any,
    extract_name,
    find_best_match,
    format_spoken_date,
    format_spoken_time,
    match_time,
    parse_date,
)
from clinic_booking.providers.base import (
    BookingConflictError,
    BookingProvider,
    CollaboratorError,
    DirectoryProvider,
)

log = logging.getLogger("clinic_booking.engine")

_T = TypeVar("_T")

TRANSFER_KEYWORDS = ("human", "person", "staff", "representative", "transfer")
AFFIRMATIVE_KEYWORDS = ("yes", "confirm", "book", "schedule", "okay", "sure")
NEGATIVE_KEYWORDS = ("no", "cancel", "change")
CLOSING_KEYWORDS = ("no", "nothing", "that's all")

MAX_ATTEMPTS = 3
MAX_CONFIRMATION_ATTEMPTS = 2
MAX_BOOKING_MONTHS_AHEAD = 3
SLOTS_TO_READ = 5

DATE_EXAMPLE = "Please say the date like 'January 15th' or 'next Monday'."
TECHNICAL_DIFFICULTIES = (
    "I'm sorry, I'm experiencing technical difficulties. "
    "Please hold while I transfer you to our staff."
)


class NextAction(str, Enum):
    GATHER = "gather"
    TRANSFER = "transfer"
    HANGUP = "hangup"


@dataclass
class AgentReply:
    """Transport-neutral reply for one turn."""

    text: str
    action: NextAction = NextAction.GATHER
    appointment: Appointment | None = None


@dataclass
class CallContext:
    call_sid: str
    caller_phone: str
    clinic: Clinic


@dataclass
class TurnResult:
    state: ConversationState
    reply: AgentReply


# ── Prompt wording ───────────────────────────────────────────────


def _doctor_label(doctor_name: str) -> str:
    return f"Dr. {doctor_name}"


def _department_list(departments: list[Department]) -> str:
    return ", ".join(d.name for d in departments)


def _doctor_list(doctors: list[Doctor]) -> str:
    return ", ".join(_doctor_label(d.name) for d in doctors)


def _slot_list(slots: list[str]) -> str:
    spoken = ", ".join(format_spoken_time(s) for s in slots[:SLOTS_TO_READ])
    if len(slots) > SLOTS_TO_READ:
        spoken += f" and {len(slots) - SLOTS_TO_READ} more times"
    return spoken


def _summary(state: ConfirmationState) -> str:
    return (
        f"{state.patient_name} with {_doctor_label(state.doctor_name)} in "
        f"{state.department_name} on {format_spoken_date(state.appointment_date)} "
        f"at {format_spoken_time(state.appointment_time)}"
    )


# ── Engine ───────────────────────────────────────────────────────


class ConversationEngine:
    """Drives one turn of the booking conversation.

    Usage::

        engine = ConversationEngine(directory=backend, booking=backend)
        result = await engine.handle_turn(session.state, speech, ctx)
        await store.save(call_sid, result.state)
        twiml = renderer.render(result.reply)
    """

    def __init__(
        self,
        directory: DirectoryProvider,
        booking: BookingProvider,
        timeout: float = 5.0,
        today: Callable[[], date] = date.today,
    ) -> None:
        self._directory = directory
        self._booking = booking
        self._timeout = timeout
        self._today = today
        self._handlers = {
            "greeting": self._on_greeting,
            "name": self._on_name,
            "department": self._on_department,
            "doctor": self._on_doctor,
            "date": self._on_date,
            "time": self._on_time,
            "confirmation": self._on_confirmation,
            "complete": self._on_complete,
            "transfer": self._on_transfer,
        }

    async def handle_turn(
        self, state: ConversationState, text: str, ctx: CallContext,
    ) -> TurnResult:
        """Process one caller utterance against ``state``."""
        if state.step != "complete" and contains_any(text, TRANSFER_KEYWORDS):
            result = self._transfer(
                state,
                "Of course! Let me transfer you to one of our staff members "
                "who can assist you further. Please hold on.",
                reason="caller_request",
            )
        else:
            try:
                result = await self._handlers[state.step](state, text, ctx)
            except CollaboratorError as e:
                log.error("Collaborator failure at step %s (call %s): %s", state.step, ctx.call_sid, e)
                result = self.fallback(state)

        if result.state.step != state.step:
            log.info(
                "FSM advance: %s → %s (call %s)", state.step, result.state.step, ctx.call_sid
            )
        return result

    def fallback(
        self,
        state: ConversationState | None = None,
        appointment: Appointment | None = None,
    ) -> TurnResult:
        """Apology plus transfer, used whenever a collaborator fails.

        If the appointment was already committed the caller still hears its ID.
        """
        text = TECHNICAL_DIFFICULTIES
        if appointment is not None:
            text = f"Your appointment has been booked. Your appointment ID is {appointment.id}. " + text
        result = self._transfer(state, text, reason="collaborator_error")
        result.reply.appointment = appointment
        return result

    async def resolve_clinic(self, phone: str) -> Clinic | None:
        return await self._call(self._directory.get_clinic_by_phone(phone))

    async def record_turn(
        self, ctx: CallContext, step: str, text: str, reply: AgentReply,
    ) -> None:
        """Append the per-turn audit row. Raises CollaboratorError on failure."""
        await self._call(
            self._booking.append_conversation_log(
                ConversationLogEntry(
                    clinic_id=ctx.clinic.id,
                    call_sid=ctx.call_sid,
                    caller_phone=ctx.caller_phone,
                    conversation_step=step,
                    user_input=text,
                    agent_response=reply.text,
                )
            )
        )

    async def record_duration(self, call_sid: str, duration_seconds: int) -> None:
        await self._call(self._booking.update_call_duration(call_sid, duration_seconds))

    # ── Helpers ────────────────────────────────────────────────

    async def _call(self, awaitable: Awaitable[_T]) -> _T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise CollaboratorError(f"collaborator timed out after {self._timeout}s") from e

    @staticmethod
    def _transfer(state: ConversationState, text: str, reason: str) -> TurnResult:
        if isinstance(state, TransferState):
            return TurnResult(state, AgentReply(text, NextAction.TRANSFER))
        return TurnResult(TransferState(reason=reason), AgentReply(text, NextAction.TRANSFER))

    def _failed(
        self, state, limit: int, retry_text: str, give_up_text: str,
    ) -> TurnResult:
        """Record a failed slot-fill; transfer once ``limit`` is reached."""
        state = state.retry()
        if state.attempts >= limit:
            log.info("Step %s gave up after %d attempts", state.step, state.attempts)
            return self._transfer(state, give_up_text, reason=f"{state.step}_attempts")
        return TurnResult(state, AgentReply(retry_text))

    # ── Step handlers ──────────────────────────────────────────

    async def _on_greeting(self, state: GreetingState, text: str, ctx: CallContext) -> TurnResult:
        return TurnResult(
            NameState(),
            AgentReply(
                f"Hello! Thank you for calling {ctx.clinic.name or 'our clinic'}. "
                "I'm your automated assistant, and I can help you schedule an "
                "appointment. May I please have your name?"
            ),
        )

    async def _on_name(self, state: NameState, text: str, ctx: CallContext) -> TurnResult:
        if len(text.strip()) < 2:
            return self._failed(
                state,
                MAX_ATTEMPTS,
                "I didn't catch that. Could you please tell me your name again?",
                "I'm having trouble understanding your name. "
                "Let me transfer you to our staff for assistance.",
            )

        name = extract_name(text)
        departments = await self._call(self._directory.list_departments(ctx.clinic.id))
        if not departments:
            log.warning("Clinic %s has no active departments", ctx.clinic.id)
            return self._transfer(
                state,
                "I'm sorry, but I'm having trouble accessing our department "
                "information. Let me transfer you to our staff.",
                reason="no_departments",
            )

        return TurnResult(
            DepartmentState(patient_name=name),
            AgentReply(
                f"Nice to meet you, {name}! We have the following departments "
                f"available: {_department_list(departments)}. Which department "
                "would you like to schedule an appointment with?"
            ),
        )

    async def _on_department(
        self, state: DepartmentState, text: str, ctx: CallContext,
    ) -> TurnResult:
        departments = await self._call(self._directory.list_departments(ctx.clinic.id))
        if not departments:
            return self._transfer(
                state,
                "I'm sorry, but I'm having trouble accessing our department "
                "information. Let me transfer you to our staff.",
                reason="no_departments",
            )

        department = find_best_match(text, departments)
        if department is None:
            return self._failed(
                state,
                MAX_ATTEMPTS,
                "I didn't catch which department you'd like. Our available "
                f"departments are: {_department_list(departments)}. "
                "Which one would you prefer?",
                "I'm having trouble understanding which department you'd like. "
                "Let me transfer you to our staff who can help you better.",
            )

        doctors = await self._call(self._directory.list_doctors(ctx.clinic.id, department.id))
        if not doctors:
            return TurnResult(
                advance(state, DepartmentState),
                AgentReply(
                    f"I'm sorry, but we don't have any doctors available in "
                    f"{department.name} at the moment. Would you like to try a "
                    "different department, or shall I transfer you to our staff?"
                ),
            )

        if len(doctors) == 1:
            doctor = doctors[0]
            return TurnResult(
                advance(
                    state, DateState,
                    department_id=department.id,
                    department_name=department.name,
                    doctor_id=doctor.id,
                    doctor_name=doctor.name,
                ),
                AgentReply(
                    f"Perfect! For {department.name}, we have "
                    f"{_doctor_label(doctor.name)} available. What date would you "
                    f"like to schedule your appointment? {DATE_EXAMPLE}"
                ),
            )

        return TurnResult(
            advance(
                state, DoctorState,
                department_id=department.id,
                department_name=department.name,
                doctors=doctors,
            ),
            AgentReply(
                f"Great choice! For {department.name}, we have these doctors "
                f"available: {_doctor_list(doctors)}. Which doctor would you prefer?"
            ),
        )

    async def _on_doctor(self, state: DoctorState, text: str, ctx: CallContext) -> TurnResult:
        doctor = find_best_match(text, state.doctors)
        if doctor is None:
            return self._failed(
                state,
                MAX_ATTEMPTS,
                "I didn't catch which doctor you'd like. Our available doctors "
                f"are: {_doctor_list(state.doctors)}. Which one would you prefer?",
                "I'm having trouble understanding which doctor you'd prefer. "
                "Let me transfer you to our staff.",
            )

        return TurnResult(
            advance(state, DateState, doctor_id=doctor.id, doctor_name=doctor.name),
            AgentReply(
                f"Excellent! I'll schedule you with {_doctor_label(doctor.name)}. "
                f"What date would you like for your appointment? {DATE_EXAMPLE}"
            ),
        )

    async def _on_date(self, state: DateState, text: str, ctx: CallContext) -> TurnResult:
        today = self._today()
        requested = parse_date(text, today)

        if requested is None:
            return self._failed(
                state,
                MAX_ATTEMPTS,
                "I didn't catch the date. Could you please say the date again? "
                "For example, 'January 15th' or 'next Monday'.",
                "I'm having trouble understanding the date you'd like. Let me "
                "transfer you to our staff who can help schedule your appointment.",
            )

        # Out-of-range dates reprompt without using up an attempt
        if requested < today:
            return TurnResult(
                state,
                AgentReply(
                    "I'm sorry, but that date has already passed. "
                    "Could you please choose a future date?"
                ),
            )
        if requested > today + relativedelta(months=MAX_BOOKING_MONTHS_AHEAD):
            return TurnResult(
                state,
                AgentReply(
                    f"I can only schedule appointments up to {MAX_BOOKING_MONTHS_AHEAD} "
                    "months in advance. Could you please choose an earlier date?"
                ),
            )

        slots = await self._call(self._booking.available_slots(state.doctor_id, requested))
        spoken_date = format_spoken_date(requested)
        if not slots:
            return TurnResult(
                advance(state, DateState),
                AgentReply(
                    f"I'm sorry, but {_doctor_label(state.doctor_name)} doesn't have "
                    f"any available appointments on {spoken_date}. "
                    "Would you like to try a different date?"
                ),
            )

        slots = sorted(slots)
        return TurnResult(
            advance(state, TimeState, appointment_date=requested, available_slots=slots),
            AgentReply(
                f"Perfect! {_doctor_label(state.doctor_name)} has these available "
                f"times on {spoken_date}: {_slot_list(slots)}. "
                "Which time works best for you?"
            ),
        )

    async def _on_time(self, state: TimeState, text: str, ctx: CallContext) -> TurnResult:
        chosen = match_time(text, state.available_slots)
        if chosen is None:
            spoken = ", ".join(
                format_spoken_time(s) for s in state.available_slots[:SLOTS_TO_READ]
            )
            return self._failed(
                state,
                MAX_ATTEMPTS,
                f"I didn't catch which time you'd like. Available times include: "
                f"{spoken}. Which time would you prefer?",
                "I'm having trouble understanding which time you'd prefer. "
                "Let me transfer you to our staff.",
            )

        confirming = advance(state, ConfirmationState, appointment_time=chosen)
        return TurnResult(
            confirming,
            AgentReply(
                f"Perfect! Let me confirm your appointment details: "
                f"{_summary(confirming)}. Should I go ahead and book this "
                "appointment for you?"
            ),
        )

    async def _on_confirmation(
        self, state: ConfirmationState, text: str, ctx: CallContext,
    ) -> TurnResult:
        if contains_any(text, AFFIRMATIVE_KEYWORDS):
            return await self._book(state, ctx)

        if contains_any(text, NEGATIVE_KEYWORDS):
            return TurnResult(
                advance(state, DateState),
                AgentReply(
                    "No problem! What other date would work for you? "
                    "You can also ask to speak with our staff."
                ),
            )

        return self._failed(
            state,
            MAX_CONFIRMATION_ATTEMPTS,
            "I didn't catch that. Should I go ahead and book this appointment? "
            "Please say 'yes' to confirm or 'no' if you'd like to make changes.",
            "I want to make sure your appointment is booked correctly, so let "
            "me transfer you to our staff.",
        )

    async def _book(self, state: ConfirmationState, ctx: CallContext) -> TurnResult:
        request = AppointmentRequest(
            clinic_id=ctx.clinic.id,
            department_id=state.department_id,
            doctor_id=state.doctor_id,
            patient_name=state.patient_name,
            phone_number=ctx.caller_phone,
            appointment_date=state.appointment_date,
            appointment_time=state.appointment_time,
        )

        try:
            appointment = await self._call(self._booking.insert_appointment(request))
        except BookingConflictError as e:
            log.warning("Booking conflict for call %s: %s", ctx.call_sid, e)
            return self._transfer(
                state,
                "I'm sorry, that time was just taken by another caller. Let me "
                "transfer you to our staff who can find you another slot.",
                reason="booking_conflict",
            )
        except CollaboratorError as e:
            log.error("Booking failed for call %s: %s", ctx.call_sid, e)
            return self._transfer(
                state,
                "I'm sorry, there was an error booking your appointment. Let me "
                "transfer you to our staff who can help you complete the booking.",
                reason="booking_failed",
            )

        try:
            await self._call(
                self._booking.append_call_log(
                    CallLogEntry(
                        clinic_id=ctx.clinic.id,
                        call_sid=ctx.call_sid,
                        caller_phone=ctx.caller_phone,
                        call_summary=(
                            f"Appointment booked for {state.patient_name} with "
                            f"{_doctor_label(state.doctor_name)}"
                        ),
                        appointment_booked=True,
                    )
                )
            )
        except CollaboratorError as e:
            log.error(
                "Call log failed after booking %s (call %s): %s",
                appointment.id, ctx.call_sid, e,
            )
            return self.fallback(state, appointment=appointment)

        log.info("Appointment %s booked (call %s)", appointment.id, ctx.call_sid)
        booked = advance(state, CompleteState, appointment_id=appointment.id)
        return TurnResult(
            booked,
            AgentReply(
                f"Excellent! Your appointment has been successfully booked: "
                f"{_summary(booked)}. Your appointment ID is {appointment.id}. "
                "Is there anything else I can help you with today?",
                appointment=appointment,
            ),
        )

    async def _on_complete(self, state: CompleteState, text: str, ctx: CallContext) -> TurnResult:
        if contains_any(text, CLOSING_KEYWORDS):
            return TurnResult(
                state,
                AgentReply(
                    "Perfect! Thank you for calling, and we look forward to seeing "
                    "you for your appointment. Have a great day!",
                    NextAction.HANGUP,
                ),
            )
        return self._transfer(
            state,
            "I'd be happy to help with anything else. For additional requests, "
            "let me transfer you to our staff who can assist you further.",
            reason="follow_up_request",
        )

    async def _on_transfer(self, state: TransferState, text: str, ctx: CallContext) -> TurnResult:
        return self._transfer(
            state,
            "Please hold while I connect you with our staff.",
            reason=state.reason,
        )
