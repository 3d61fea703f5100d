# fixifly/lifecycle.py
"""
One logical task lifecycle shared by bookings and support tickets.

Each task flavor keeps its own outward status vocabulary; an adapter maps it
onto TaskState and writes a TaskState back in that vocabulary. Transition
logic lives in `fixifly.services.task_lifecycle` and only talks TaskState.
"""

from enum import Enum


class TaskState(str, Enum):
    UNASSIGNED = 'UNASSIGNED'
    ASSIGNED = 'ASSIGNED'
    ACCEPTED = 'ACCEPTED'
    DECLINED = 'DECLINED'
    IN_PROGRESS = 'IN_PROGRESS'
    COMPLETED = 'COMPLETED'
    CANCELLED = 'CANCELLED'

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({TaskState.DECLINED, TaskState.COMPLETED, TaskState.CANCELLED})

ALLOWED_TRANSITIONS = {
    TaskState.UNASSIGNED: {TaskState.ASSIGNED},
    TaskState.ASSIGNED: {TaskState.ACCEPTED, TaskState.DECLINED},
    TaskState.ACCEPTED: {TaskState.IN_PROGRESS, TaskState.CANCELLED},
    TaskState.IN_PROGRESS: {TaskState.COMPLETED, TaskState.CANCELLED},
    TaskState.DECLINED: set(),
    TaskState.COMPLETED: set(),
    TaskState.CANCELLED: set(),
}


def can_transition(current: TaskState, target: TaskState) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


class TaskAdapter:
    status_field = None
    kind = None
    assigned_filter = {}

    def to_state(self, task) -> TaskState:
        raise NotImplementedError

    def apply_state(self, task, state: TaskState) -> list:
        """Write `state` onto the task; returns the changed field names."""
        raise NotImplementedError


class BookingAdapter(TaskAdapter):
    status_field = 'status'
    kind = 'booking'
    assigned_filter = {'status': 'confirmed', 'vendor_response': 'none'}

    def to_state(self, task) -> TaskState:
        status = task.status
        if status == 'waiting_for_engineer':
            return TaskState.UNASSIGNED
        if status == 'confirmed':
            return TaskState.ACCEPTED if task.vendor_response == 'accepted' else TaskState.ASSIGNED
        if status == 'in_progress':
            return TaskState.IN_PROGRESS
        if status == 'completed':
            return TaskState.COMPLETED
        if status == 'cancelled':
            return TaskState.CANCELLED
        if status == 'declined':
            return TaskState.DECLINED
        raise ValueError(f"Unknown booking status: {status}")

    def apply_state(self, task, state: TaskState) -> list:
        mapping = {
            TaskState.UNASSIGNED: ('waiting_for_engineer', 'none'),
            TaskState.ASSIGNED: ('confirmed', 'none'),
            TaskState.ACCEPTED: ('confirmed', 'accepted'),
            TaskState.IN_PROGRESS: ('in_progress', None),
            TaskState.COMPLETED: ('completed', None),
            TaskState.CANCELLED: ('cancelled', None),
            TaskState.DECLINED: ('declined', 'declined'),
        }
        status, response = mapping[state]
        task.status = status
        changed = ['status']
        if response is not None:
            task.vendor_response = response
            changed.append('vendor_response')
        return changed


class SupportTicketAdapter(TaskAdapter):
    status_field = 'vendor_status'
    kind = 'support_ticket'
    assigned_filter = {'vendor_status': 'Pending', 'vendor_response': 'none'}

    def to_state(self, task) -> TaskState:
        status = task.vendor_status
        if status == 'Pending':
            return TaskState.ASSIGNED if task.vendor_id else TaskState.UNASSIGNED
        if status == 'Accepted':
            return TaskState.IN_PROGRESS if task.started_at else TaskState.ACCEPTED
        if status == 'Completed':
            return TaskState.COMPLETED
        if status == 'Declined':
            return TaskState.DECLINED
        if status == 'Cancelled':
            return TaskState.CANCELLED
        raise ValueError(f"Unknown support ticket status: {status}")

    def apply_state(self, task, state: TaskState) -> list:
        # Tickets have no separate in-progress status; `started_at` tells them apart
        mapping = {
            TaskState.UNASSIGNED: ('Pending', 'none'),
            TaskState.ASSIGNED: ('Pending', 'none'),
            TaskState.ACCEPTED: ('Accepted', 'accepted'),
            TaskState.IN_PROGRESS: ('Accepted', None),
            TaskState.COMPLETED: ('Completed', None),
            TaskState.CANCELLED: ('Cancelled', None),
            TaskState.DECLINED: ('Declined', 'declined'),
        }
        status, response = mapping[state]
        task.vendor_status = status
        changed = ['vendor_status']
        if response is not None:
            task.vendor_response = response
            changed.append('vendor_response')
        return changed


BOOKING_ADAPTER = BookingAdapter()
SUPPORT_TICKET_ADAPTER = SupportTicketAdapter()


def adapter_for(task) -> TaskAdapter:
    from fixifly.models import Booking, SupportTicket

    if isinstance(task, Booking):
        return BOOKING_ADAPTER
    if isinstance(task, SupportTicket):
        return SUPPORT_TICKET_ADAPTER
    raise TypeError(f"No lifecycle adapter for {type(task).__name__}")
