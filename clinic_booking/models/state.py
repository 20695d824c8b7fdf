"""Per-call conversation state as a tagged union.

Each step of the booking FSM has its own model carrying only the data that
is meaningful once that step is reached.  The ``step`` literal is the
discriminator, so a serialized state always round-trips to the right class::

    state = STATE_ADAPTER.validate_python({"step": "name", "attempts": 1})
    assert isinstance(state, NameState)

Step order (happy path)::

    greeting → name → department → [doctor] → date → time → confirmation → complete

``transfer`` is reachable from every step and is terminal.
"""

from __future__ import annotations

from datetime import date
from typing import Annotated, Any, Literal, TypeVar, Union

from pydantic import BaseModel, Field, TypeAdapter

from .directory import Doctor


class _StepState(BaseModel):
    attempts: int = 0

    def retry(self):
        """Copy of this state with one more failed attempt recorded."""
        return self.model_copy(update={"attempts": self.attempts + 1})


class GreetingState(_StepState):
    step: Literal["greeting"] = "greeting"


class NameState(_StepState):
    step: Literal["name"] = "name"


class DepartmentState(_StepState):
    step: Literal["department"] = "department"
    patient_name: str


class DoctorState(DepartmentState):
    step: Literal["doctor"] = "doctor"
    department_id: str
    department_name: str
    doctors: list[Doctor]


class DateState(DepartmentState):
    step: Literal["date"] = "date"
    department_id: str
    department_name: str
    doctor_id: str
    doctor_name: str


class TimeState(DateState):
    step: Literal["time"] = "time"
    appointment_date: date
    available_slots: list[str]


class ConfirmationState(DateState):
    step: Literal["confirmation"] = "confirmation"
    appointment_date: date
    appointment_time: str


class CompleteState(ConfirmationState):
    step: Literal["complete"] = "complete"
    appointment_id: str


class TransferState(_StepState):
    step: Literal["transfer"] = "transfer"
    reason: str = ""


ConversationState = Annotated[
    Union[
        GreetingState,
        NameState,
        DepartmentState,
        DoctorState,
        DateState,
        TimeState,
        ConfirmationState,
        CompleteState,
        TransferState,
    ],
    Field(discriminator="step"),
]

STATE_ADAPTER: TypeAdapter[Any] = TypeAdapter(ConversationState)

_S = TypeVar("_S", bound=_StepState)


def advance(source: BaseModel, target: type[_S], **updates: Any) -> _S:
    """Build ``target`` from ``source``, carrying over shared fields.

    ``step`` and ``attempts`` are never carried, so every transition starts
    the new step with ``attempts == 0``.
    """
    carried = {
        name: getattr(source, name)
        for name in target.model_fields
        if name not in ("step", "attempts") and name in type(source).model_fields
    }
    carried.update(updates)
    return target(**carried)
