import pytest

from usageprobe.terminal.state import (
    InvalidTransitionError,
    TerminalLaunchError,
    TerminalProcessExitedError,
    TerminalState,
    TerminalStateMachine,
    TerminalTimeoutError,
)


class TestTerminalStateMachine:
    def test_happy_path(self) -> "None":
        fsm = TerminalStateMachine()
        for state in (
            TerminalState.LAUNCHING,
            TerminalState.AWAITING_OUTPUT,
            TerminalState.CAPTURED,
        ):
            fsm.advance(state)
        assert fsm.state is TerminalState.CAPTURED
        assert fsm.failed is False
        assert fsm.history[0] is TerminalState.NOT_STARTED
        assert len(fsm.history) == 4

    def test_cannot_capture_before_launch(self) -> "None":
        fsm = TerminalStateMachine()
        with pytest.raises(InvalidTransitionError):
            fsm.advance(TerminalState.CAPTURED)

    def test_launch_failure_is_terminal_until_relaunch(self) -> "None":
        fsm = TerminalStateMachine()
        fsm.advance(TerminalState.LAUNCHING)
        fsm.advance(TerminalState.LAUNCH_FAILED)
        assert fsm.failed is True
        with pytest.raises(InvalidTransitionError):
            fsm.advance(TerminalState.AWAITING_OUTPUT)
        fsm.advance(TerminalState.LAUNCHING)
        assert fsm.state is TerminalState.LAUNCHING

    def test_persistent_session_cycle(self) -> "None":
        fsm = TerminalStateMachine()
        fsm.advance(TerminalState.LAUNCHING)
        fsm.advance(TerminalState.AWAITING_OUTPUT)
        fsm.advance(TerminalState.CAPTURED)
        fsm.advance(TerminalState.AWAITING_OUTPUT)
        fsm.advance(TerminalState.TIMED_OUT)
        fsm.advance(TerminalState.LAUNCHING)
        assert fsm.state is TerminalState.LAUNCHING

    def test_errors_carry_their_state(self) -> "None":
        assert TerminalTimeoutError("x").state is TerminalState.TIMED_OUT
        assert TerminalProcessExitedError("x").state is TerminalState.PROCESS_EXITED
        assert TerminalLaunchError("x").state is TerminalState.LAUNCH_FAILED
        assert TerminalTimeoutError("x", partial_text="5h").partial_text == "5h"
