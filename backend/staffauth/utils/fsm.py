from __future__ import annotations
"""Simple finite state machine utility for enforcing allowed status transitions.

Usage:
    from staffauth.utils.fsm import TransitionValidator
    SESSION_FSM = TransitionValidator({
        'AUTHENTICATED': {'IMPERSONATING', 'ANONYMOUS'},
        'IMPERSONATING': {'AUTHENTICATED', 'ANONYMOUS'},
    }, field_name='session state', errors={('IMPERSONATING', 'IMPERSONATING'): AlreadyImpersonating})
    SESSION_FSM.assert_can_transition(current_state, target_state)

Raises the mapped error for a specific (current, target) pair, else 400.
"""
from typing import Callable, Dict, Optional, Set, Tuple
from flask import abort
from werkzeug.exceptions import HTTPException

ErrorFactory = Callable[[str], HTTPException]


class TransitionValidator:
    def __init__(self, graph: Dict[str, Set[str]], field_name: str = 'status',
                 errors: Optional[Dict[Tuple[str, str], ErrorFactory]] = None):
        self.graph = graph
        self.field_name = field_name
        self.errors = errors or {}

    def can_transition(self, current: str, target: str) -> bool:
        return target in self.graph.get(current, set())

    def assert_can_transition(self, current: str, target: str):
        if not self.can_transition(current, target):
            description = f"Invalid {self.field_name} transition {current} -> {target}"
            factory = self.errors.get((current, target))
            if factory is not None:
                raise factory(description)
            abort(400, description=description)
        return True

__all__ = ['TransitionValidator']
