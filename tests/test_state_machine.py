import pytest

from repchat.services.state_machine import (
    ChatMode,
    InvalidTransitionError,
    can_transition,
    hand_off_to_human,
    transition,
)


class TestTransitions:
    def test_ai_to_human(self):
        assert transition(ChatMode.AI, ChatMode.HUMAN) == ChatMode.HUMAN

    def test_human_to_ai_is_not_allowed(self):
        with pytest.raises(InvalidTransitionError):
            transition(ChatMode.HUMAN, ChatMode.AI)

    def test_same_mode(self):
        with pytest.raises(InvalidTransitionError):
            transition(ChatMode.AI, ChatMode.AI)

    def test_can_transition(self):
        assert can_transition(ChatMode.AI, ChatMode.HUMAN) is True
        assert can_transition(ChatMode.HUMAN, ChatMode.AI) is False


class TestHandOffToHuman:
    def test_from_ai(self):
        assert hand_off_to_human(ChatMode.AI) == ChatMode.HUMAN

    def test_repeat_is_noop(self):
        assert hand_off_to_human(ChatMode.HUMAN) == ChatMode.HUMAN

    def test_error_message(self):
        with pytest.raises(InvalidTransitionError) as exc:
            transition(ChatMode.HUMAN, ChatMode.AI)
        assert "HUMAN -> AI" in str(exc.value)
