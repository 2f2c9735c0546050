"""Invoice settlement state machine implementation using the transitions library."""

import logging
from datetime import datetime
from typing import Any, Callable, Optional

from transitions import Machine, MachineError

from state_machine.models import InvoiceStatus

logger = logging.getLogger(__name__)


class InvoiceState(str):
    """Invoice state constants matching InvoiceStatus enum."""

    UNPAID = InvoiceStatus.UNPAID.value
    PENDING = InvoiceStatus.PENDING.value
    PAID = InvoiceStatus.PAID.value
    CANCELLED = InvoiceStatus.CANCELLED.value

    @classmethod
    def all_states(cls) -> list[str]:
        """Return all valid states."""
        return [cls.UNPAID, cls.PENDING, cls.PAID, cls.CANCELLED]

    @classmethod
    def open_states(cls) -> list[str]:
        """Return states that can still settle."""
        return [cls.UNPAID, cls.PENDING]

    @classmethod
    def terminal_states(cls) -> list[str]:
        """Return terminal states."""
        return [cls.PAID, cls.CANCELLED]

    @classmethod
    def is_terminal(cls, state: str) -> bool:
        """Check if a state is terminal."""
        return state in cls.terminal_states()


class TransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(
        self,
        message: str,
        current_state: str,
        attempted_trigger: str,
        invoice_id: Optional[str] = None,
    ):
        self.current_state = current_state
        self.attempted_trigger = attempted_trigger
        self.invoice_id = invoice_id
        super().__init__(message)


class SettlementFSM:
    """
    Finite State Machine for an invoice's settlement lifecycle.

    States:
        - UNPAID: Invoice issued, nothing received
        - PENDING: Payment seen but not yet settled
        - PAID: Settled (terminal)
        - CANCELLED: Withdrawn or expired (terminal)

    Transitions:
        - mark_pending: UNPAID -> PENDING
        - settle: UNPAID/PENDING -> PAID
        - cancel: UNPAID/PENDING -> CANCELLED

    The machine never owns the invoice. It mirrors what the status source
    reports, so ``observe`` is the usual entry point.
    """

    TRANSITIONS = [
        {
            "trigger": "mark_pending",
            "source": InvoiceState.UNPAID,
            "dest": InvoiceState.PENDING,
        },
        {
            "trigger": "settle",
            "source": InvoiceState.open_states(),
            "dest": InvoiceState.PAID,
        },
        {
            "trigger": "cancel",
            "source": InvoiceState.open_states(),
            "dest": InvoiceState.CANCELLED,
        },
    ]

    # Observed state -> trigger that reaches it
    OBSERVATION_TRIGGERS = {
        InvoiceState.PENDING: "mark_pending",
        InvoiceState.PAID: "settle",
        InvoiceState.CANCELLED: "cancel",
    }

    def __init__(
        self,
        invoice_id: str,
        initial_state: str = InvoiceState.UNPAID,
        on_transition: Optional[Callable[[str, str, str], None]] = None,
    ):
        """
        Initialize the settlement state machine.

        Args:
            invoice_id: Opaque identifier assigned by the issuer
            initial_state: Starting state (default: UNPAID)
            on_transition: Optional callback called on each transition
                          with (invoice_id, source_state, dest_state)
        """
        self.invoice_id = invoice_id
        self._on_transition = on_transition
        self._history: list[dict[str, Any]] = []

        if initial_state not in InvoiceState.all_states():
            raise ValueError(f"Invalid initial state: {initial_state}")

        self.machine = Machine(
            model=self,
            states=InvoiceState.all_states(),
            transitions=self.TRANSITIONS,
            initial=initial_state,
            auto_transitions=False,
            send_event=True,
            after_state_change=self._after_transition,
        )

        self._record_history(None, initial_state, "initialized")

    @property
    def current_state(self) -> str:
        """Get the current state."""
        return self.state  # type: ignore[return-value]

    @property
    def is_terminal(self) -> bool:
        """Check if current state is terminal."""
        return InvoiceState.is_terminal(self.current_state)

    @property
    def history(self) -> list[dict[str, Any]]:
        """Get transition history."""
        return self._history.copy()

    def _after_transition(self, event: Any) -> None:
        source = event.transition.source
        dest = event.transition.dest
        trigger = event.event.name

        self._record_history(source, dest, trigger)

        logger.info(
            f"Invoice {self.invoice_id}: Transition '{trigger}' "
            f"completed: {source} -> {dest}"
        )

        if self._on_transition:
            self._on_transition(self.invoice_id, source, dest)

    def _record_history(
        self, source: Optional[str], dest: str, trigger: str
    ) -> None:
        self._history.append(
            {
                "timestamp": datetime.utcnow().isoformat(),
                "source": source,
                "dest": dest,
                "trigger": trigger,
            }
        )

    def can_trigger(self, trigger: str) -> bool:
        """Check if a trigger can be executed from current state."""
        may_method = getattr(self, f"may_{trigger}", None)
        if may_method:
            return may_method()
        return False

    def get_available_triggers(self) -> list[str]:
        """Get list of triggers available from current state."""
        return self.machine.get_triggers(self.current_state)

    def trigger(self, trigger_name: str, **kwargs: Any) -> dict[str, Any]:
        """
        Execute a state transition.

        Raises:
            TransitionError: If the transition is not valid from current state
        """
        if self.is_terminal:
            raise TransitionError(
                f"Cannot transition from terminal state '{self.current_state}'",
                current_state=self.current_state,
                attempted_trigger=trigger_name,
                invoice_id=self.invoice_id,
            )

        if not self.can_trigger(trigger_name):
            available = self.get_available_triggers()
            raise TransitionError(
                f"Cannot execute '{trigger_name}' from state '{self.current_state}'. "
                f"Available triggers: {available}",
                current_state=self.current_state,
                attempted_trigger=trigger_name,
                invoice_id=self.invoice_id,
            )

        previous_state = self.current_state

        try:
            getattr(self, trigger_name)(**kwargs)
        except MachineError as e:
            raise TransitionError(
                str(e),
                current_state=previous_state,
                attempted_trigger=trigger_name,
                invoice_id=self.invoice_id,
            ) from e

        return {
            "success": True,
            "invoice_id": self.invoice_id,
            "previous_state": previous_state,
            "current_state": self.current_state,
            "trigger": trigger_name,
        }

    def observe(self, observed_state: str) -> bool:
        """
        Apply a state reported by the status source.

        Returns True when the machine moved. Repeated, backward and unknown
        observations leave the machine where it is. A terminal machine only
        accepts its own state again; anything else raises TransitionError.
        """
        if observed_state == self.current_state:
            return False

        trigger_name = self.OBSERVATION_TRIGGERS.get(observed_state)

        if trigger_name is None:
            if observed_state in InvoiceState.all_states():
                logger.warning(
                    f"Invoice {self.invoice_id}: ignoring backward observation "
                    f"{self.current_state} -> {observed_state}"
                )
            else:
                logger.warning(
                    f"Invoice {self.invoice_id}: ignoring unknown state {observed_state!r}"
                )
            if self.is_terminal:
                raise TransitionError(
                    f"Invoice is terminal in '{self.current_state}', "
                    f"cannot observe '{observed_state}'",
                    current_state=self.current_state,
                    attempted_trigger="observe",
                    invoice_id=self.invoice_id,
                )
            return False

        self.trigger(trigger_name)
        return True

    def to_dict(self) -> dict[str, Any]:
        """Serialize state machine to dictionary."""
        return {
            "invoice_id": self.invoice_id,
            "current_state": self.current_state,
            "is_terminal": self.is_terminal,
            "available_triggers": self.get_available_triggers(),
            "history": self.history,
        }

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        on_transition: Optional[Callable[[str, str, str], None]] = None,
    ) -> "SettlementFSM":
        """Restore state machine from dictionary."""
        return cls(
            invoice_id=data["invoice_id"],
            initial_state=data["current_state"],
            on_transition=on_transition,
        )

    def __repr__(self) -> str:
        return f"SettlementFSM(invoice_id={self.invoice_id!r}, state={self.current_state!r})"
