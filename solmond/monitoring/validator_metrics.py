"""
Validator metrics collector.

Runs one collection cycle per ``collect()`` call:
- issues the independent chain queries, each under its own timeout
- reads epoch info once through the TTL cache
- derives comparative validator vs. network metrics
- exports everything as Prometheus gauges
- drives scheduled status alerts and transition alerts

A failed query only marks its own metrics unavailable; the rest of the
cycle carries on.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Dict, List, Optional, Tuple

from prometheus_client import CollectorRegistry, Gauge

from solmond.connectors.base import ChainQueryGateway, EpochInfo, Target, VoteAccountsSnapshot
from .alert_scheduler import AlertDedupScheduler
from .metric_engine import (
    LAMPORTS_PER_SOL, DerivedMetrics, VotingStatus, block_time_diff, derive_metrics,
    nearest_thousand_format,
)
from .metrics_collector import MetricsCollector
from .ttl_cache import CacheKind, TTLCache

QUERY_TIMEOUT_SECONDS = 5.0

# Depth below the tip at which blocks are expected to be confirmed on both nodes
CONFIRMED_SLOT_LAG = 32

NOT_VOTING_MESSAGE = "Solana validator is NOT VOTING"
VOTING_MESSAGE = "Solana validator is VOTING"
DELINQUENT_MESSAGE = "Your solana validator is in DELINQUENT state"


@dataclass(frozen=True)
class QueryResult:
    """Outcome of one chain query within a cycle."""
    name: str
    value: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class CycleState:
    """Values carried from one cycle to the next."""
    last_epoch: Optional[int] = None
    was_delinquent: bool = False
    vote_height_alerting: bool = False
    balance_alerting: bool = False
    epoch_diff_alerting: bool = False


@dataclass
class AlertPolicy:
    """Which transition alerts are enabled, and their thresholds."""
    delinquency_alerts: bool = True
    new_epoch_alerts: bool = False
    vote_height_alerts: bool = False
    vote_height_threshold: int = 0
    balance_alerts: bool = False
    balance_threshold: float = 0.0
    epoch_diff_alerts: bool = False
    epoch_diff_threshold: int = 0


@dataclass(frozen=True)
class CycleObservation:
    """Inputs to transition detection. None means not observed this cycle."""
    derived: Optional[DerivedMetrics] = None
    epoch: Optional[int] = None
    network_epoch: Optional[int] = None
    identity_balance: Optional[float] = None


@dataclass
class CycleReport:
    """What one collection cycle produced."""
    available: Dict[str, bool] = field(default_factory=dict)
    derived: Optional[DerivedMetrics] = None
    epoch: Optional[int] = None
    network_epoch: Optional[int] = None
    identity_balance: Optional[float] = None
    alerts: List[str] = field(default_factory=list)

    def observation(self) -> CycleObservation:
        return CycleObservation(derived=self.derived, epoch=self.epoch,
                                network_epoch=self.network_epoch, identity_balance=self.identity_balance)


def _threshold_crossed(was_alerting: bool, breached: Optional[bool]) -> Tuple[bool, bool]:
    """Return (fire, alerting). An unknown reading keeps the previous state."""
    if breached is None:
        return False, was_alerting
    return breached and not was_alerting, breached


def detect_transitions(previous: CycleState,
                       observed: CycleObservation,
                       policy: AlertPolicy) -> Tuple[CycleState, List[str]]:
    """
    Compare this cycle's observations with the previous cycle's state.

    Threshold alerts fire once when the threshold is crossed and re-arm
    after the value recovers.

    Returns the next state and the transition alert messages to send.
    """
    messages = []
    derived = observed.derived
    epoch = observed.epoch

    if (policy.new_epoch_alerts and previous.last_epoch is not None
            and epoch is not None and epoch > previous.last_epoch):
        messages.append(f"New epoch {epoch} has started (previous epoch {previous.last_epoch})")

    was_delinquent = previous.was_delinquent
    vote_height_alerting = previous.vote_height_alerting
    if derived is not None:
        if policy.delinquency_alerts and derived.is_delinquent and not was_delinquent:
            messages.append(DELINQUENT_MESSAGE)
        was_delinquent = derived.is_delinquent

        diff = derived.vote_height.difference
        breached = None
        if diff is not None:
            breached = policy.vote_height_alerts and diff >= policy.vote_height_threshold > 0
        fire, vote_height_alerting = _threshold_crossed(vote_height_alerting, breached)
        if fire:
            messages.append(
                f"Validator vote height is behind the network by {diff} slots "
                f"(threshold {policy.vote_height_threshold})"
            )

    balance = observed.identity_balance
    breached = None
    if balance is not None:
        breached = policy.balance_alerts and 0 < policy.balance_threshold and balance < policy.balance_threshold
    fire, balance_alerting = _threshold_crossed(previous.balance_alerting, breached)
    if fire:
        messages.append(
            f"Identity account balance {balance:.4f} SOL is below the threshold {policy.balance_threshold} SOL"
        )

    network_epoch = observed.network_epoch
    breached = None
    if network_epoch is not None and epoch is not None:
        breached = policy.epoch_diff_alerts and network_epoch - epoch >= policy.epoch_diff_threshold > 0
    fire, epoch_diff_alerting = _threshold_crossed(previous.epoch_diff_alerting, breached)
    if fire:
        messages.append(
            f"Validator epoch {epoch} is behind the network epoch {network_epoch} "
            f"(threshold {policy.epoch_diff_threshold})"
        )

    return CycleState(
        # an unknown epoch keeps the last known one for the next comparison
        last_epoch=epoch if epoch is not None else previous.last_epoch,
        was_delinquent=was_delinquent,
        vote_height_alerting=vote_height_alerting,
        balance_alerting=balance_alerting,
        epoch_diff_alerting=epoch_diff_alerting,
    ), messages


class ValidatorMetricsCollector(MetricsCollector):
    """
    Collects validator health metrics for one tracked validator.

    Metrics include:
    - Vote account state (stake, last vote, root slot, commission, delinquency)
    - Validator vs. network vote height and vote credits
    - Confirmed block time on both targets
    - Node version, slot leader, current slot, transaction count, balances
    """

    def __init__(self,
                 gateway: ChainQueryGateway,
                 node_identity: str,
                 vote_identity: str,
                 registry: Optional[CollectorRegistry] = None,
                 cache: Optional[TTLCache] = None,
                 dispatcher=None,
                 policy: Optional[AlertPolicy] = None,
                 query_timeout: float = QUERY_TIMEOUT_SECONDS):
        """
        Initialize validator metrics collector.

        Args:
            gateway: Chain query gateway
            node_identity: Identity pubkey of the tracked validator
            vote_identity: Vote account pubkey of the tracked validator
            registry: Optional Prometheus registry
            cache: TTL cache for epoch info; a 30s cache is created if omitted
            dispatcher: NotificationDispatcher for transition alerts
            policy: Transition alert settings
            query_timeout: Per-query timeout in seconds
        """
        self.gateway = gateway
        self.node_identity = node_identity
        self.vote_identity = vote_identity
        self.cache = cache or TTLCache()
        self.cache.register(CacheKind.EPOCH_INFO, lambda: self.gateway.get_epoch_info(Target.VALIDATOR))
        self.dispatcher = dispatcher
        self.policy = policy or AlertPolicy()
        self.query_timeout = query_timeout
        self.scheduler: Optional[AlertDedupScheduler] = None
        self.state = CycleState()
        self._published: Dict[Gauge, set] = {}
        super().__init__(registry)

    def attach_scheduler(self, scheduler: AlertDedupScheduler) -> None:
        """Use ``scheduler`` for voting-status alerts and hand it the alert-count gauge."""
        scheduler.alert_count_gauge = self.status_alert_count
        scheduler.dedup_errors = self.dedup_errors
        self.scheduler = scheduler

    def _initialize_metrics(self) -> None:
        """Initialize validator metrics."""
        key_labels = ['votekey', 'pubkey']

        # Vote account metrics
        self.total_validators = self.create_gauge(
            'solana_active_validators', 'Total number of active validators by state', ['state'])
        self.activated_stake = self.create_gauge(
            'solana_validator_activated_stake', 'Activated stake per validator', key_labels)
        self.last_vote = self.create_gauge(
            'solana_validator_last_vote', 'Last voted slot per validator', key_labels)
        self.root_slot = self.create_gauge(
            'solana_validator_root_slot', 'Root slot per validator', key_labels)
        self.delinquent = self.create_gauge(
            'solana_validator_delinquent', 'Whether a validator is delinquent', key_labels)
        self.commission = self.create_gauge(
            'solana_val_commission', 'Solana validator current commission.', ['solana_val_commission'])
        self.delinquent_commission = self.create_gauge(
            'solana_val_delinquuent_commission', 'Solana validator delinqent commission.',
            ['solana_delinquent_commission'])
        self.vote_account = self.create_gauge(
            'solana_vote_account', 'whether the vote account is staked for this epoch', ['state'])
        self.voting_status = self.create_gauge(
            'solana_val_status', 'solana validator voting status i.e., voting or jailed.', ['solana_val_status'])

        # Vote height and credits
        self.network_vote_height = self.create_gauge(
            'solana_network_vote_height', 'solana network vote height', ['solana_network_vote_height'])
        self.validator_vote_height = self.create_gauge(
            'solana_validator_vote_height', 'solana validator vote height', ['solana_validator_vote_height'])
        self.vote_height_diff = self.create_gauge(
            'solana_vote_height_diff', 'solana vote height difference of validator and network',
            ['solana_vote_height_diff'])
        self.vote_credits = self.create_gauge(
            'solana_validator_vote_credits', 'solana validator vote credits of previous and current epoch.',
            ['type'])
        self.network_vote_credits = self.create_gauge(
            'solana_network_vote_credits', 'solana network average vote credits of previous and current epoch.',
            ['type'])

        # Node metrics
        self.node_version = self.create_gauge('solana_node_version', 'Node version of solana', ['version'])
        self.slot_leader = self.create_gauge('solana_slot_leader', 'Current slot leader', ['solana_slot_leader'])
        self.current_slot = self.create_gauge('solana_current_slot', 'Current slot height', ['solana_current_slot'])
        self.tx_count = self.create_gauge('solana_tx_count', 'solana transaction count', ['solana_tx_count'])
        self.ip_address = self.create_gauge(
            'solana_ip_address', 'IP Address from clustrnode information, gossip', ['ip_address'])

        # Block time
        self.block_time = self.create_gauge('solana_block_time', 'Current block time.', ['solana_block_time'])
        self.network_block_time = self.create_gauge(
            'solana_network_confirmed_time', 'Confirmed Block time of network', ['solana_network_confirmed_time'])
        self.validator_block_time = self.create_gauge(
            'solana_val_confirmed_time', 'Confirmed Block time of validator', ['solana_val_confirmed_time'])
        self.block_time_diff = self.create_gauge(
            'solana_confirmed_blocktime_diff', 'Block time difference of network and validator',
            ['solana_confirmed_blocktime_diff'])

        # Balances
        self.account_balance = self.create_gauge(
            'solana_account_balance', 'Solana identity account balance', ['solana_acc_balance'])
        self.vote_account_balance = self.create_gauge(
            'solana_vote_account_balance', 'Vote account balance', ['solana_vote_acc_bal'])
        self.identity_account_balance = self.create_gauge(
            'solana_identity_account_balance', 'Identity account balance', ['solana_identity_acc_bal'])

        # Alerting
        self.status_alert_count = self.create_gauge(
            'solana_val_alert_count', 'Count of alerts about validator status alerting', ['alert_count'])
        self.dedup_errors = self.create_counter(
            'solana_alert_dedup_unknown_total', 'Status alert ticks skipped because dedup state was unknown')

        self.unavailable = self.create_gauge(
            'solana_metric_unavailable', 'Whether a metric could not be produced this cycle', ['metric'])

    async def _query(self, name: str, call: Awaitable[Any]) -> QueryResult:
        """Run one gateway call under the per-query timeout."""
        try:
            value = await asyncio.wait_for(call, timeout=self.query_timeout)
            return QueryResult(name, value)
        except asyncio.TimeoutError:
            self.record_error('timeout')
            self.logger.warning(f"Query {name} timed out after {self.query_timeout}s")
            return QueryResult(name, error='timeout')
        except Exception as e:
            self.record_error(type(e).__name__)
            self.logger.error(f"Query {name} failed: {e}")
            return QueryResult(name, error=str(e))

    async def _epoch_info(self) -> QueryResult:
        return await self._query('epoch_info', self.cache.get_or_refresh(CacheKind.EPOCH_INFO))

    def _mark(self, report: CycleReport, metric: str, available: bool, *gauges) -> None:
        """Record availability; clear the affected gauges when unavailable."""
        report.available[metric] = available
        self.unavailable.labels(metric=metric).set(0 if available else 1)
        if not available:
            for gauge in gauges:
                gauge.clear()
                self._published.pop(gauge, None)

    def _publish(self, gauge: Gauge, series: Dict[Tuple[str, ...], float]) -> None:
        """
        Make ``series`` the complete set of label sets exported by ``gauge``.

        New label sets are set before stale ones are removed, so a scrape
        running alongside never sees the gauge empty.
        """
        current = {tuple(str(v) for v in labels): value for labels, value in series.items()}
        for labels, value in current.items():
            gauge.labels(*labels).set(value)
        for labels in self._published.get(gauge, set()) - current.keys():
            gauge.remove(*labels)
        self._published[gauge] = set(current)

    def _set_labelled(self, gauge: Gauge, label: str, value: float) -> None:
        self._publish(gauge, {(label,): value})

    async def collect_metrics(self) -> Dict[str, Any]:
        """
        Run one collection cycle.

        Returns:
            Dictionary with per-metric availability, derived values and alerts sent
        """
        report = CycleReport()

        queries = [
            self._query('vote_accounts', self.gateway.get_vote_accounts(Target.VALIDATOR)),
            self._query('network_vote_accounts', self.gateway.get_vote_accounts(Target.NETWORK)),
            self._query('version', self.gateway.get_version()),
            self._query('slot_leader', self.gateway.get_slot_leader()),
            self._query('current_slot', self.gateway.get_current_slot(Target.VALIDATOR)),
            self._query('tx_count', self.gateway.get_tx_count()),
            self._query('cluster_nodes', self.gateway.get_cluster_nodes()),
            self._query('identity_balance', self.gateway.get_balance(self.node_identity)),
            self._query('vote_balance', self.gateway.get_balance(self.vote_identity)),
        ]
        if self.policy.epoch_diff_alerts:
            queries.append(self._query('network_epoch_info', self.gateway.get_epoch_info(Target.NETWORK)))
        results = await asyncio.gather(*queries)
        by_name = {r.name: r for r in results}

        # one epoch read serves every computation in this cycle
        epoch_result = await self._epoch_info()
        if epoch_result.ok:
            epoch_info: EpochInfo = epoch_result.value
            report.epoch = epoch_info.epoch

        network_epoch = by_name.get('network_epoch_info')
        if network_epoch is not None and network_epoch.ok:
            report.network_epoch = network_epoch.value.epoch

        self._emit_vote_accounts(report, by_name['vote_accounts'], by_name['network_vote_accounts'])
        self._emit_version(report, by_name['version'])
        self._emit_slot_leader(report, by_name['slot_leader'])
        self._emit_current_slot(report, by_name['current_slot'])
        await self._emit_block_times(report, by_name['current_slot'])
        self._emit_tx_count(report, by_name['tx_count'])
        self._emit_ip_address(report, by_name['cluster_nodes'])
        self._emit_balances(report, by_name['identity_balance'], by_name['vote_balance'])

        await self._evaluate_alerts(report)

        return {
            'available': report.available,
            'derived': report.derived,
            'epoch': report.epoch,
            'alerts': report.alerts,
            'timestamp': datetime.now().isoformat(),
        }

    def _emit_vote_accounts(self, report: CycleReport,
                            result: QueryResult, network_result: QueryResult) -> None:
        vote_gauges = (self.total_validators, self.activated_stake, self.last_vote, self.root_slot,
                       self.delinquent, self.commission, self.delinquent_commission,
                       self.vote_account, self.voting_status)
        height_gauges = (self.network_vote_height, self.validator_vote_height, self.vote_height_diff)

        if not result.ok:
            self._mark(report, 'vote_accounts', False, *vote_gauges)
            self._mark(report, 'vote_credits', False, self.vote_credits)
            self._mark(report, 'network_vote_credits', False, self.network_vote_credits)
            self._mark(report, 'vote_height', False, *height_gauges)
            return

        snapshot: VoteAccountsSnapshot = result.value
        network_snapshot = network_result.value if network_result.ok else None

        derived = derive_metrics(snapshot, report.epoch, self.node_identity, network_snapshot)
        report.derived = derived

        self._emit_vote_account_state(report, snapshot, derived)
        self._emit_vote_height(report, derived)
        if report.epoch is None:
            self._mark(report, 'vote_credits', False, self.vote_credits)
            self._mark(report, 'network_vote_credits', False, self.network_vote_credits)
        else:
            self._emit_vote_credits(report, derived)

    def _emit_vote_account_state(self, report: CycleReport, snapshot: VoteAccountsSnapshot,
                                 derived: DerivedMetrics) -> None:
        self._publish(self.total_validators, {
            ('current',): len(snapshot.current),
            ('delinquent',): len(snapshot.delinquent),
        })

        current = snapshot.find_current(self.node_identity)
        delinquent = snapshot.find_delinquent(self.node_identity)
        record = current or delinquent

        self._mark(report, 'vote_accounts', True)
        if record is None:
            self._mark(report, 'tracked_validator', False,
                       self.activated_stake, self.last_vote, self.root_slot, self.delinquent,
                       self.commission, self.delinquent_commission, self.vote_account, self.voting_status)
            self.logger.warning(f"Validator {self.node_identity} not found in vote accounts")
            return
        self._mark(report, 'tracked_validator', True)

        keys = (record.vote_identity, record.node_identity)
        self._publish(self.last_vote, {keys: record.last_vote})
        self._publish(self.root_slot, {keys: record.root_slot})

        if current is not None:
            status = derived.voting_status
            self._publish(self.vote_account, {('current',): 1 if current.is_epoch_vote_account else 0})
            self._publish(self.commission, {(str(current.commission),): current.commission})
            self._publish(self.delinquent, {keys: 0})
            self._publish(self.activated_stake, {keys: derived.stake})
            self._publish(self.voting_status, {(status.value,): 1 if status is VotingStatus.VOTING else 0})
            self._publish(self.delinquent_commission, {})
        else:
            self._publish(self.delinquent_commission, {(str(delinquent.commission),): delinquent.commission})
            self._publish(self.delinquent, {keys: 1})
            for gauge in (self.activated_stake, self.vote_account, self.commission, self.voting_status):
                self._publish(gauge, {})

    def _emit_vote_height(self, report: CycleReport, derived: DerivedMetrics) -> None:
        height = derived.vote_height
        if not height.found:
            self._mark(report, 'vote_height', False,
                       self.network_vote_height, self.validator_vote_height, self.vote_height_diff)
            return

        self._mark(report, 'vote_height', True)
        self._set_labelled(self.validator_vote_height, 'validator', height.validator)
        self._set_labelled(self.network_vote_height, 'network', height.network)
        self._set_labelled(self.vote_height_diff, 'vote height difference', height.difference)

    def _emit_vote_credits(self, report: CycleReport, derived: DerivedMetrics) -> None:
        if derived.current_credits is None:
            self._mark(report, 'vote_credits', False, self.vote_credits)
        else:
            self._mark(report, 'vote_credits', True)
            self.vote_credits.labels(type='current').set(derived.current_credits)
            self.vote_credits.labels(type='previous').set(derived.previous_credits)

        average = derived.network_credits
        if average is None:
            self._mark(report, 'network_vote_credits', False, self.network_vote_credits)
        else:
            self._mark(report, 'network_vote_credits', True)
            self.network_vote_credits.labels(type='current').set(average.current)
            self.network_vote_credits.labels(type='previous').set(average.previous)

    async def _evaluate_alerts(self, report: CycleReport) -> None:
        derived = report.derived
        if derived is not None and derived.voting_status is not None and self.scheduler is not None:
            message = NOT_VOTING_MESSAGE if derived.voting_status is VotingStatus.NOT_VOTING else VOTING_MESSAGE
            try:
                await self.scheduler.evaluate(message)
            except Exception as e:
                self.record_error('status_alert')
                self.logger.error(f"Error evaluating status alert: {e}")

        self.state, messages = detect_transitions(self.state, report.observation(), self.policy)

        for message in messages:
            report.alerts.append(message)
            if self.dispatcher is not None:
                await self.dispatcher.dispatch(message)

    def _emit_version(self, report: CycleReport, result: QueryResult) -> None:
        available = result.ok and bool(result.value)
        self._mark(report, 'version', available, self.node_version)
        if available:
            self._set_labelled(self.node_version, result.value, 1)

    def _emit_slot_leader(self, report: CycleReport, result: QueryResult) -> None:
        available = result.ok and bool(result.value)
        self._mark(report, 'slot_leader', available, self.slot_leader)
        if available:
            self._set_labelled(self.slot_leader, result.value, 1)

    def _emit_current_slot(self, report: CycleReport, result: QueryResult) -> None:
        self._mark(report, 'current_slot', result.ok, self.current_slot)
        if result.ok:
            self._set_labelled(self.current_slot, str(result.value), result.value)

    async def _emit_block_times(self, report: CycleReport, slot_result: QueryResult) -> None:
        gauges = (self.block_time, self.network_block_time, self.validator_block_time, self.block_time_diff)
        if not slot_result.ok:
            self._mark(report, 'block_time', False, *gauges)
            return

        slot = max(slot_result.value - CONFIRMED_SLOT_LAG, 0)
        validator_block, network_block = await asyncio.gather(
            self._query('validator_block', self.gateway.get_confirmed_block(Target.VALIDATOR, slot)),
            self._query('network_block', self.gateway.get_confirmed_block(Target.NETWORK, slot)),
        )

        if not (validator_block.ok and network_block.ok):
            self._mark(report, 'block_time', False, *gauges)
            return

        validator_time = validator_block.value.block_time
        network_time = network_block.value.block_time
        if validator_time is None or network_time is None:
            self._mark(report, 'block_time', False, *gauges)
            return

        diff, formatted = block_time_diff(validator_time, network_time)
        self._mark(report, 'block_time', True)
        self._set_labelled(self.block_time, str(validator_time), validator_time)
        self._set_labelled(self.validator_block_time, str(validator_time), validator_time)
        self._set_labelled(self.network_block_time, str(network_time), network_time)
        self._set_labelled(self.block_time_diff, formatted, diff)

    def _emit_tx_count(self, report: CycleReport, result: QueryResult) -> None:
        self._mark(report, 'tx_count', result.ok, self.tx_count)
        if result.ok:
            self._set_labelled(self.tx_count, nearest_thousand_format(result.value), result.value)

    def _emit_ip_address(self, report: CycleReport, result: QueryResult) -> None:
        address = None
        if result.ok:
            for node in result.value:
                if node.identity == self.node_identity:
                    address = node.gossip_address
                    break

        self._mark(report, 'ip_address', bool(address), self.ip_address)
        if address:
            self._set_labelled(self.ip_address, address, 1)

    def _emit_balances(self, report: CycleReport, identity: QueryResult, vote: QueryResult) -> None:
        self._mark(report, 'identity_balance', identity.ok, self.identity_account_balance, self.account_balance)
        if identity.ok:
            sol = identity.value / LAMPORTS_PER_SOL
            report.identity_balance = sol
            self._set_labelled(self.identity_account_balance, f"{sol:.4f}", sol)
            self._set_labelled(self.account_balance, f"{sol:.4f}", sol)

        self._mark(report, 'vote_balance', vote.ok, self.vote_account_balance)
        if vote.ok:
            sol = vote.value / LAMPORTS_PER_SOL
            self._set_labelled(self.vote_account_balance, f"{sol:.4f}", sol)
