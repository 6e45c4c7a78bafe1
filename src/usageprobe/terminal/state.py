import enum


class TerminalState(enum.Enum):
    NOT_STARTED = "not_started"
    LAUNCHING = "launching"
    AWAITING_OUTPUT = "awaiting_output"
    CAPTURED = "captured"
    TIMED_OUT = "timed_out"
    PROCESS_EXITED = "process_exited"
    LAUNCH_FAILED = "launch_failed"


FAILURE_STATES = frozenset(
    {
        TerminalState.TIMED_OUT,
        TerminalState.PROCESS_EXITED,
        TerminalState.LAUNCH_FAILED,
    }
)

_TRANSITIONS: "dict[TerminalState, frozenset[TerminalState]]" = {
    TerminalState.NOT_STARTED: frozenset({TerminalState.LAUNCHING}),
    TerminalState.LAUNCHING: frozenset(
        {TerminalState.AWAITING_OUTPUT, TerminalState.LAUNCH_FAILED}
    ),
    TerminalState.AWAITING_OUTPUT: frozenset(
        {
            TerminalState.CAPTURED,
            TerminalState.TIMED_OUT,
            TerminalState.PROCESS_EXITED,
        }
    ),
    # a persistent session goes back to awaiting output for the next call
    TerminalState.CAPTURED: frozenset(
        {TerminalState.AWAITING_OUTPUT, TerminalState.PROCESS_EXITED}
    ),
    # a persistent session relaunches after a failure
    TerminalState.TIMED_OUT: frozenset({TerminalState.LAUNCHING}),
    TerminalState.PROCESS_EXITED: frozenset({TerminalState.LAUNCHING}),
    TerminalState.LAUNCH_FAILED: frozenset({TerminalState.LAUNCHING}),
}


class InvalidTransitionError(RuntimeError):
    pass


class TerminalStateMachine:
    """
    TerminalStateMachine tracks one terminal process lifecycle:

    NOT_STARTED -> LAUNCHING -> AWAITING_OUTPUT -> CAPTURED, or one of
    TIMED_OUT, PROCESS_EXITED, LAUNCH_FAILED. Illegal transitions raise.
    """

    def __init__(self) -> "None":
        self.state: "TerminalState" = TerminalState.NOT_STARTED
        self.history: "list[TerminalState]" = [self.state]

    def advance(self, new_state: "TerminalState") -> "None":
        if new_state not in _TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"cannot go from {self.state.value} to {new_state.value}"
            )
        self.state = new_state
        self.history.append(new_state)

    @property
    def failed(self) -> "bool":
        return self.state in FAILURE_STATES


class TerminalError(Exception):
    """
    TerminalError is raised by the runner when a capture ends in a
    failure state. partial_text holds whatever was read before.
    """

    state: "TerminalState" = TerminalState.TIMED_OUT

    def __init__(self, message: "str", partial_text: "str" = "") -> "None":
        super().__init__(message)
        self.partial_text = partial_text


class TerminalTimeoutError(TerminalError):
    state = TerminalState.TIMED_OUT


class TerminalProcessExitedError(TerminalError):
    state = TerminalState.PROCESS_EXITED


class TerminalLaunchError(TerminalError):
    state = TerminalState.LAUNCH_FAILED
