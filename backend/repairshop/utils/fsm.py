"""Finite state machine utility for enforcing allowed status transitions.

Used by the two lifecycle models (Appointment, RepairTicket). Each machine carries
its transition graph plus the named staff actions exposed by the dashboard.
Usage:
    from repairshop.utils.fsm import APPOINTMENT_FSM
    APPOINTMENT_FSM.assert_can_transition(appt.status, 'confirmed')
    APPOINTMENT_FSM.available_actions('scheduled')   # ['confirm', 'cancel']
    APPOINTMENT_FSM.target_for_action('confirm', appt.status)

Raises InvalidTransition (rendered as 400) if invalid.
"""
from __future__ import annotations
from typing import Dict, Set, List, Tuple, Optional
from repairshop.errors import InvalidTransition


class TransitionValidator:
    def __init__(self, graph: Dict[str, Set[str]], field_name: str = 'status',
                 actions: Optional[Dict[str, Tuple[Set[str], str]]] = None):
        # actions: name -> (allowed source statuses, target status)
        self.graph = graph
        self.field_name = field_name
        self.actions = actions or {}
        for name, (sources, target) in self.actions.items():
            for src in sources:
                if target not in self.graph.get(src, set()):
                    raise ValueError(f"action {name} not backed by transition {src} -> {target}")

    @property
    def states(self) -> List[str]:
        return list(self.graph.keys())

    def can_transition(self, current: str, target: str) -> bool:
        return target in self.graph.get(current, set())

    def assert_can_transition(self, current: str, target: str):
        if not self.can_transition(current, target):
            raise InvalidTransition(current, target, self.field_name)
        return True

    def is_terminal(self, status: str) -> bool:
        return not self.graph.get(status)

    def available_actions(self, status: str) -> List[str]:
        """Actions whose source set contains status, in declaration order."""
        return [name for name, (sources, _) in self.actions.items() if status in sources]

    def target_for_action(self, action: str, current: str) -> str:
        if action not in self.actions:
            raise KeyError(action)
        sources, target = self.actions[action]
        if current not in sources:
            raise InvalidTransition(current, target, self.field_name)
        return target

    def as_openapi(self) -> Dict[str, List[str]]:
        return {state: sorted(targets) for state, targets in self.graph.items()}


APPOINTMENT_FSM = TransitionValidator(
    {
        'scheduled': {'confirmed', 'cancelled', 'no_show'},
        'confirmed': {'arrived', 'converted', 'cancelled', 'no_show'},
        'arrived': {'converted'},
        'no_show': set(),
        'cancelled': set(),
        'converted': set(),
    },
    actions={
        'confirm': ({'scheduled'}, 'confirmed'),
        'check_in': ({'confirmed'}, 'arrived'),
        'convert': ({'confirmed', 'arrived'}, 'converted'),
        'cancel': ({'scheduled', 'confirmed'}, 'cancelled'),
        'mark_no_show': ({'confirmed'}, 'no_show'),
    },
)

TICKET_FSM = TransitionValidator(
    {
        'new': {'in_progress', 'on_hold', 'cancelled'},
        'in_progress': {'on_hold', 'completed', 'cancelled'},
        'on_hold': {'in_progress', 'completed', 'cancelled'},
        'completed': {'in_progress'},
        'cancelled': {'in_progress'},
    },
    actions={
        'start': ({'new'}, 'in_progress'),
        'hold': ({'new', 'in_progress'}, 'on_hold'),
        'resume': ({'on_hold'}, 'in_progress'),
        'complete': ({'in_progress', 'on_hold'}, 'completed'),
        'cancel': ({'new', 'in_progress', 'on_hold'}, 'cancelled'),
        'reopen': ({'completed', 'cancelled'}, 'in_progress'),
    },
)

__all__ = ['TransitionValidator', 'APPOINTMENT_FSM', 'TICKET_FSM']
