"""
Derived validator metrics.

Pure functions over a vote-accounts snapshot and the cycle's epoch info.
Nothing here performs I/O or keeps state between calls; values that cannot
be computed are returned as None rather than as a misleading zero.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Sequence, Tuple

from solmond.connectors.base import EpochCredit, VoteAccountRecord, VoteAccountsSnapshot

LAMPORTS_PER_SOL = 10 ** 9


class VotingStatus(Enum):
    """Voting classification of the tracked validator."""
    VOTING = "Voting"
    NOT_VOTING = "Jailed"


@dataclass(frozen=True)
class CreditsAverage:
    """Network-average vote credits over qualifying validators."""
    current: float
    previous: float
    sample_size: int


@dataclass(frozen=True)
class VoteHeight:
    """Last-vote slots of the tracked validator as seen by both targets."""
    network: Optional[int]
    validator: Optional[int]

    @property
    def found(self) -> bool:
        return self.network is not None and self.validator is not None

    @property
    def difference(self) -> Optional[int]:
        if not self.found:
            return None
        return self.network - self.validator


@dataclass(frozen=True)
class DerivedMetrics:
    """Values derived for one collection cycle."""
    epoch: Optional[int]
    stake: Optional[float]
    voting_status: Optional[VotingStatus]
    vote_height: VoteHeight
    current_credits: Optional[int]
    previous_credits: Optional[int]
    network_credits: Optional[CreditsAverage]
    is_delinquent: bool

    @property
    def tracked_found(self) -> bool:
        return self.stake is not None


def normalize_stake(activated_stake: int) -> float:
    """Convert lamports to SOL."""
    return activated_stake / LAMPORTS_PER_SOL


def epoch_credits_for(credits: Sequence[EpochCredit], epoch: int) -> Tuple[int, int]:
    """
    Return (current, previous) credits recorded for ``epoch``.

    The first matching entry wins. A validator with no entry for the epoch
    (for example one that only just became active) yields (0, 0).
    """
    for credit in credits:
        if credit.epoch == epoch:
            return credit.current_credits, credit.previous_credits
    return 0, 0


def network_average_credits(records: Iterable[VoteAccountRecord],
                            epoch: int) -> Optional[CreditsAverage]:
    """
    Average current and previous credits across ``records``.

    Only validators whose current and previous credits are both nonzero
    count toward the mean. Returns None when nobody qualifies.
    """
    total_current = 0
    total_previous = 0
    count = 0

    for record in records:
        current, previous = epoch_credits_for(record.epoch_credits, epoch)
        if current != 0 and previous != 0:
            total_current += current
            total_previous += previous
            count += 1

    if count == 0:
        return None

    return CreditsAverage(
        current=total_current / count,
        previous=total_previous / count,
        sample_size=count,
    )


def vote_height_differential(validator_snapshot: VoteAccountsSnapshot,
                             network_snapshot: Optional[VoteAccountsSnapshot],
                             node_identity: str) -> VoteHeight:
    """
    Look up the tracked validator's last vote on both targets.

    Matching is by node identity within each snapshot's current set. A
    side where the validator is missing is reported as None.
    """
    validator_record = validator_snapshot.find_current(node_identity)
    network_record = None
    if network_snapshot is not None:
        network_record = network_snapshot.find_current(node_identity)

    return VoteHeight(
        network=network_record.last_vote if network_record else None,
        validator=validator_record.last_vote if validator_record else None,
    )


def classify_voting_status(record: VoteAccountRecord) -> VotingStatus:
    """A validator is not voting iff it is not an epoch vote account and has no stake."""
    if not record.is_epoch_vote_account and record.activated_stake <= 0:
        return VotingStatus.NOT_VOTING
    return VotingStatus.VOTING


def block_time_diff(validator_time: int, network_time: int) -> Tuple[float, str]:
    """
    Absolute difference of two unix block times.

    Returns the value parsed back from its two-decimal string form along
    with that string, so the label and the sample always agree.
    """
    formatted = f"{abs(validator_time - network_time):.2f}"
    return float(formatted), formatted


def nearest_thousand_format(value: float) -> str:
    """Human readable count, e.g. 1234567 -> '1.2M'."""
    if abs(value) < 1000:
        return str(int(value))

    for suffix in ("k", "M", "B", "T"):
        value /= 1000.0
        if abs(value) < 1000 or suffix == "T":
            return f"{value:.1f}{suffix}"
    return str(value)


def derive_metrics(snapshot: VoteAccountsSnapshot,
                   epoch: Optional[int],
                   node_identity: str,
                   network_snapshot: Optional[VoteAccountsSnapshot] = None) -> DerivedMetrics:
    """
    Compute every derived value for the tracked validator.

    ``epoch`` must be the single epoch read for the whole cycle. When it
    is None (epoch info unavailable) credit values are left as None.
    """
    record = snapshot.find_current(node_identity)
    current = previous = None
    stake = None
    status = None

    if record is not None:
        stake = normalize_stake(record.activated_stake)
        status = classify_voting_status(record)
        if epoch is not None:
            current, previous = epoch_credits_for(record.epoch_credits, epoch)

    network_credits = None
    if epoch is not None:
        network_credits = network_average_credits(snapshot.current, epoch)

    return DerivedMetrics(
        epoch=epoch,
        stake=stake,
        voting_status=status,
        vote_height=vote_height_differential(snapshot, network_snapshot, node_identity),
        current_credits=current,
        previous_credits=previous,
        network_credits=network_credits,
        is_delinquent=snapshot.find_delinquent(node_identity) is not None,
    )
