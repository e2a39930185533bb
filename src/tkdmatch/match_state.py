"""Match state machine.

A match carries two orthogonal statuses:
- schedule status: where the match is logistically (scheduled, running, ...)
- result status: how confident the outcome is (live, ..., official)

The functions here are pure: they take a MatchState snapshot and return a
new one, or raise ConflictStateError without touching the input.
"""

import logging
from dataclasses import replace
from datetime import datetime
from typing import Optional

from tkdmatch.exceptions import ConflictStateError
from tkdmatch.models import (
    TERMINAL_RESULT_STATUSES,
    ActionType,
    MatchAction,
    MatchResult,
    MatchState,
    ResultStatus,
    ResultType,
    ScheduleCommand,
    ScheduleStatus,
    utc_now,
)

logger = logging.getLogger(__name__)

_RUNNING_ACTIONS = {ActionType.MATCH_START, ActionType.ROUND_START, ActionType.MATCH_RESUME}

_COMMAND_STATUS = {
    ScheduleCommand.DELAY: ScheduleStatus.DELAYED,
    ScheduleCommand.CANCEL: ScheduleStatus.CANCELLED,
    ScheduleCommand.POSTPONE: ScheduleStatus.POSTPONED,
    ScheduleCommand.RESCHEDULE: ScheduleStatus.RESCHEDULED,
    ScheduleCommand.INTERRUPT: ScheduleStatus.INTERRUPTED,
}


def check_action_allowed(state: MatchState, action_type: ActionType) -> None:
    """Raise ConflictStateError if the match cannot take this action."""
    if state.schedule_status == ScheduleStatus.CANCELLED:
        raise ConflictStateError(f"Match is cancelled, {action_type.value} rejected")
    if state.schedule_status == ScheduleStatus.FINISHED and not action_type.is_correction:
        raise ConflictStateError(
            f"Match is finished, only corrections are accepted ({action_type.value} rejected)"
        )


def apply_action(state: MatchState, action: MatchAction) -> MatchState:
    """Apply one scoring or timing action.

    Transitions:
    - MATCH_LOADED: getting ready
    - MATCH_START / ROUND_START / MATCH_RESUME: running; the first start
      also makes the result live and stamps actual_start
    - ROUND_END: intermediate result when live
    - MATCH_END: finished and unconfirmed
    - Scoring actions add their deltas and leave both statuses alone

    Args:
        state: Current match snapshot
        action: Action to apply

    Returns:
        New MatchState

    Raises:
        ConflictStateError: On a cancelled match, or a non-correction on a
            finished match
    """
    check_action_allowed(state, action.action)
    new_state = replace(state)
    action_type = action.action

    if action.round is not None:
        new_state.round = action.round
    if action.round_time is not None:
        new_state.round_time = action.round_time

    if action_type == ActionType.MATCH_LOADED:
        new_state.schedule_status = ScheduleStatus.GETTING_READY

    elif action_type in _RUNNING_ACTIONS:
        new_state.schedule_status = ScheduleStatus.RUNNING
        if new_state.actual_start is None:
            new_state.result_status = ResultStatus.LIVE
            new_state.actual_start = action.timestamp or utc_now()

    elif action_type == ActionType.ROUND_END:
        if new_state.result_status == ResultStatus.LIVE:
            new_state.result_status = ResultStatus.INTERMEDIATE

    elif action_type == ActionType.MATCH_END:
        new_state.schedule_status = ScheduleStatus.FINISHED
        new_state.result_status = ResultStatus.UNCONFIRMED

    elif action_type.is_scoring:
        new_state.home_score += action.home_score
        new_state.away_score += action.away_score
        new_state.home_penalties += action.home_penalties
        new_state.away_penalties += action.away_penalties

    return new_state


def apply_command(
    state: MatchState,
    command: ScheduleCommand,
    scheduled_start: Optional[datetime] = None,
) -> MatchState:
    """Apply an administrative schedule command.

    Args:
        state: Current match snapshot
        command: Command to apply
        scheduled_start: New start time, only used by reschedule

    Returns:
        New MatchState

    Raises:
        ConflictStateError: If the match is already finished
    """
    new_state = replace(state)

    if command == ScheduleCommand.FINISH:
        new_state.schedule_status = ScheduleStatus.FINISHED
        if new_state.result_status not in TERMINAL_RESULT_STATUSES:
            new_state.result_status = ResultStatus.UNCONFIRMED
        return new_state

    if state.schedule_status == ScheduleStatus.FINISHED:
        raise ConflictStateError(f"Match is finished, command '{command.value}' rejected")

    new_state.schedule_status = _COMMAND_STATUS[command]
    if command == ScheduleCommand.RESCHEDULE and scheduled_start is not None:
        new_state.scheduled_start = scheduled_start
    return new_state


def apply_result(state: MatchState, result: MatchResult) -> MatchState:
    """Apply a submitted result.

    The result status becomes the match's result status and the result's
    scores become the match's scores. An official result forces the match
    to finished; live and intermediate results leave the schedule status
    alone. Once official, only official or protested may follow, and a
    protest needs an official result to contest.

    Raises:
        ConflictStateError: On a cancelled match, leaving official, a
            protest without an official result, or a live/intermediate
            result on a finished match
    """
    if state.schedule_status == ScheduleStatus.CANCELLED:
        raise ConflictStateError("Match is cancelled, result rejected")
    if state.result_status == ResultStatus.OFFICIAL and result.status not in (
        ResultStatus.OFFICIAL,
        ResultStatus.PROTESTED,
    ):
        raise ConflictStateError(
            f"Match result is official, cannot move to {result.status.value}"
        )
    if result.status == ResultStatus.PROTESTED and state.result_status != ResultStatus.OFFICIAL:
        raise ConflictStateError("Only an official result can be protested")
    if (
        state.schedule_status == ScheduleStatus.FINISHED
        and result.status not in TERMINAL_RESULT_STATUSES
    ):
        raise ConflictStateError(
            f"Match is finished, cannot take a {result.status.value} result"
        )

    new_state = replace(state)
    new_state.result_status = result.status
    new_state.home_score = result.home_score
    new_state.away_score = result.away_score
    new_state.home_penalties = result.home_penalties
    new_state.away_penalties = result.away_penalties
    if result.decision is not None:
        new_state.result_decision = result.decision
    if result.round is not None:
        new_state.round = result.round

    if result.status == ResultStatus.OFFICIAL:
        new_state.schedule_status = ScheduleStatus.FINISHED

    return new_state


def resolve_winner(
    result: MatchResult, home_competitor_id: int, away_competitor_id: int
) -> tuple[Optional[int], Optional[int]]:
    """Derive (winner_id, loser_id) of a result.

    home_type/away_type decide first; without them the scores are compared.
    A tie has no winner.

    Examples:
        >>> resolve_winner(MatchResult(ResultStatus.OFFICIAL, 15, 9), 1, 2)
        (1, 2)
    """
    if result.home_type == ResultType.WIN or result.away_type == ResultType.LOSS:
        return home_competitor_id, away_competitor_id
    if result.away_type == ResultType.WIN or result.home_type == ResultType.LOSS:
        return away_competitor_id, home_competitor_id
    if result.home_type == ResultType.TIE or result.away_type == ResultType.TIE:
        return None, None

    if result.home_score > result.away_score:
        return home_competitor_id, away_competitor_id
    if result.away_score > result.home_score:
        return away_competitor_id, home_competitor_id
    return None, None
