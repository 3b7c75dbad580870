"""
Unit tests for cycle-to-cycle transition detection.
"""

from solmond.monitoring.metric_engine import DerivedMetrics, VoteHeight, VotingStatus
from solmond.monitoring.validator_metrics import (
    DELINQUENT_MESSAGE, AlertPolicy, CycleObservation, CycleState, detect_transitions,
)


def derived(epoch=401, delinquent=False, network=1005, validator=1000):
    return DerivedMetrics(
        epoch=epoch,
        stake=None if delinquent else 5.0,
        voting_status=None if delinquent else VotingStatus.VOTING,
        vote_height=VoteHeight(network=network, validator=validator),
        current_credits=60,
        previous_credits=50,
        network_credits=None,
        is_delinquent=delinquent,
    )


def observe(epoch=401, network_epoch=None, balance=None, **kwargs):
    return CycleObservation(derived=derived(epoch=epoch, **kwargs), epoch=epoch,
                            network_epoch=network_epoch, identity_balance=balance)


class TestDetectTransitions:
    """Test cases for detect_transitions."""

    def test_first_cycle_sends_nothing(self):
        state, messages = detect_transitions(CycleState(), observe(), AlertPolicy(new_epoch_alerts=True))

        assert messages == []
        assert state.last_epoch == 401

    def test_new_epoch(self):
        policy = AlertPolicy(new_epoch_alerts=True)
        state, messages = detect_transitions(CycleState(last_epoch=400), observe(epoch=401), policy)

        assert messages == ["New epoch 401 has started (previous epoch 400)"]
        assert state.last_epoch == 401

    def test_new_epoch_disabled(self):
        _, messages = detect_transitions(CycleState(last_epoch=400), observe(epoch=401), AlertPolicy())
        assert messages == []

    def test_unknown_epoch_keeps_last_known(self):
        policy = AlertPolicy(new_epoch_alerts=True)
        state, messages = detect_transitions(CycleState(last_epoch=400), observe(epoch=None), policy)

        assert messages == []
        assert state.last_epoch == 400

    def test_new_epoch_without_vote_accounts(self):
        policy = AlertPolicy(new_epoch_alerts=True)
        state, messages = detect_transitions(CycleState(last_epoch=400), CycleObservation(epoch=401), policy)

        assert messages == ["New epoch 401 has started (previous epoch 400)"]
        assert state.last_epoch == 401

    def test_delinquency_transition(self):
        state, messages = detect_transitions(CycleState(), observe(delinquent=True), AlertPolicy())

        assert messages == [DELINQUENT_MESSAGE]
        assert state.was_delinquent

        _, repeat = detect_transitions(state, observe(delinquent=True), AlertPolicy())
        assert repeat == []

    def test_delinquency_alerts_disabled(self):
        _, messages = detect_transitions(CycleState(), observe(delinquent=True),
                                         AlertPolicy(delinquency_alerts=False))
        assert messages == []

    def test_missing_vote_accounts_keeps_delinquent_state(self):
        state = CycleState(was_delinquent=True, vote_height_alerting=True)

        state, messages = detect_transitions(state, CycleObservation(epoch=401), AlertPolicy())

        assert messages == []
        assert state.was_delinquent
        assert state.vote_height_alerting

    def test_vote_height_rearms_after_recovery(self):
        policy = AlertPolicy(vote_height_alerts=True, vote_height_threshold=3)

        state, first = detect_transitions(CycleState(), observe(network=1005), policy)
        state, recovered = detect_transitions(state, observe(network=1000), policy)
        state, again = detect_transitions(state, observe(network=1010), policy)

        assert len(first) == 1
        assert recovered == []
        assert len(again) == 1
        assert "by 10 slots" in again[0]

    def test_zero_threshold_never_alerts(self):
        policy = AlertPolicy(vote_height_alerts=True, vote_height_threshold=0)
        _, messages = detect_transitions(CycleState(), observe(network=2000), policy)
        assert messages == []

    def test_unknown_vote_height_keeps_alerting_state(self):
        policy = AlertPolicy(vote_height_alerts=True, vote_height_threshold=3)
        state = CycleState(vote_height_alerting=True)

        state, messages = detect_transitions(state, observe(network=None), policy)

        assert messages == []
        assert state.vote_height_alerting


class TestBalanceTransitions:
    """Identity balance falling below the configured threshold."""

    policy = AlertPolicy(balance_alerts=True, balance_threshold=1.0)

    def test_fires_once_then_rearms(self):
        state, low = detect_transitions(CycleState(), observe(balance=0.5), self.policy)
        state, still_low = detect_transitions(state, observe(balance=0.4), self.policy)
        state, recovered = detect_transitions(state, observe(balance=2.0), self.policy)
        state, low_again = detect_transitions(state, observe(balance=0.9), self.policy)

        assert low == ["Identity account balance 0.5000 SOL is below the threshold 1.0 SOL"]
        assert still_low == []
        assert recovered == []
        assert len(low_again) == 1

    def test_balance_at_threshold_does_not_alert(self):
        state, messages = detect_transitions(CycleState(), observe(balance=1.0), self.policy)

        assert messages == []
        assert not state.balance_alerting

    def test_unknown_balance_keeps_state(self):
        state, messages = detect_transitions(CycleState(balance_alerting=True), observe(), self.policy)

        assert messages == []
        assert state.balance_alerting

    def test_disabled(self):
        _, messages = detect_transitions(CycleState(), observe(balance=0.1), AlertPolicy(balance_threshold=1.0))
        assert messages == []


class TestEpochDifferenceTransitions:
    """Validator epoch lagging the network epoch."""

    policy = AlertPolicy(epoch_diff_alerts=True, epoch_diff_threshold=2)

    def test_fires_at_threshold(self):
        state, messages = detect_transitions(CycleState(), observe(epoch=401, network_epoch=403), self.policy)

        assert messages == ["Validator epoch 401 is behind the network epoch 403 (threshold 2)"]
        assert state.epoch_diff_alerting

    def test_below_threshold(self):
        _, messages = detect_transitions(CycleState(), observe(epoch=401, network_epoch=402), self.policy)
        assert messages == []

    def test_rearms_after_catching_up(self):
        state, _ = detect_transitions(CycleState(), observe(epoch=401, network_epoch=403), self.policy)
        state, caught_up = detect_transitions(state, observe(epoch=403, network_epoch=403), self.policy)
        state, behind = detect_transitions(state, observe(epoch=403, network_epoch=405), self.policy)

        assert caught_up == []
        assert len(behind) == 1

    def test_unknown_network_epoch_keeps_state(self):
        state, messages = detect_transitions(CycleState(epoch_diff_alerting=True),
                                             observe(epoch=401), self.policy)

        assert messages == []
        assert state.epoch_diff_alerting
