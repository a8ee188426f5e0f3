from repchat.services.errors import ExternalIntegrationFailed
from repchat.services.result import BestEffort


class TestBestEffort:
    def test_done(self):
        outcome = BestEffort.done("CH123")
        assert outcome.attempted is True
        assert outcome.succeeded is True
        assert outcome.value == "CH123"

    def test_skipped_is_not_attempted(self):
        outcome = BestEffort.skipped("CH123")
        assert outcome.attempted is False
        assert outcome.succeeded is True
        assert outcome.value == "CH123"

    def test_run_returns_value(self):
        outcome = BestEffort.run("noop", lambda: 42)
        assert outcome.succeeded is True
        assert outcome.value == 42

    def test_run_swallows_exception(self):
        def boom():
            raise ExternalIntegrationFailed("Twilio returned 500")

        outcome = BestEffort.run("bridge", boom, {"conversation_id": "c1"})

        assert outcome.attempted is True
        assert outcome.succeeded is False
        assert outcome.value is None
        assert outcome.error == "Twilio returned 500"

    def test_has_no_unwrap(self):
        assert not hasattr(BestEffort.done(1), "unwrap_or")
