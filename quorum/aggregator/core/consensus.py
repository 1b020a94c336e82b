from typing import Dict, Iterable, List, Optional

from quorum.aggregator.core.dispatcher import DispatchOutcome
from quorum.aggregator.core.errors import InvalidSignature, NoMajority
from quorum.aggregator.core.stake_resolver import StakeResolver
from quorum.shared.models import ConsensusResult, SignedResponse, TaskRequest
from quorum.shared.signing import verify
from quorum.utils.custom_logger import get_logger

logger = get_logger(__name__)


def successful_responses(outcomes: Iterable[DispatchOutcome]) -> List[SignedResponse]:
    return [o.response for o in outcomes if o.response is not None]


def tally_votes(responses: Iterable[SignedResponse], stakes: Dict[str, int]) -> Dict[int, int]:
    """Stake per response value, keyed in first-seen order. Unstaked voters add nothing."""
    tally: Dict[int, int] = {}
    for response in responses:
        stake = stakes.get(response.identity)
        if stake is None:
            continue
        value = response.completed_task.response
        tally[value] = tally.get(value, 0) + stake
    return tally


def pick_winner(tally: Dict[int, int]) -> Optional[int]:
    """Value with the most stake; on a tie the value seen first wins."""
    winner: Optional[int] = None
    best = -1
    for value, stake in tally.items():
        if stake > best:
            winner, best = value, stake
    return winner


class ConsensusResolver:
    """Decides the canonical response to a task by strict stake majority."""

    def __init__(self, stake_resolver: StakeResolver):
        self.stake_resolver = stake_resolver

    def _admissible(self, responses: Iterable[SignedResponse], task: TaskRequest) -> List[SignedResponse]:
        kept: List[SignedResponse] = []
        seen = set()
        for response in responses:
            if response.identity in seen:
                logger.debug(f"Ignoring repeated response from {response.identity}")
                continue
            if response.completed_task.value != task.value:
                logger.debug(
                    f"Ignoring response from {response.identity}: answers value "
                    f"{response.completed_task.value}, task is {task.value}"
                )
                continue
            if not verify(response):
                logger.debug(str(InvalidSignature(response.identity)))
                continue
            seen.add(response.identity)
            kept.append(response)
        return kept

    async def resolve(self, responses: Iterable[SignedResponse], task: TaskRequest) -> ConsensusResult:
        """
        Tally verified responses by stake and return the strict-majority value.

        Raises:
            NoMajority: no value holds more than half of the responders' total stake.
            StakeResolutionFailure: a stake lookup failed.
        """
        admitted = self._admissible(responses, task)
        if not admitted:
            raise NoMajority(task.source_position, None, 0, 0)

        stakes, total_stake = await self.stake_resolver.resolve_stakes(
            [r.identity for r in admitted], min_stake=0
        )
        tally = tally_votes(admitted, stakes)
        winner = pick_winner(tally)
        winning_stake = tally.get(winner, 0) if winner is not None else 0

        if winner is None or 2 * winning_stake <= total_stake:
            raise NoMajority(task.source_position, winner, winning_stake, total_stake)

        voters = [r.identity for r in admitted if r.completed_task.response == winner and r.identity in stakes]
        logger.info(
            f"Task at position {task.source_position} resolved to {winner} "
            f"with {winning_stake}/{total_stake} stake ({len(voters)} voter(s))"
        )
        return ConsensusResult(
            value=winner,
            winning_stake=winning_stake,
            total_stake=total_stake,
            tally=tally,
            voters=voters,
        )

    async def resolve_outcomes(self, outcomes: Iterable[DispatchOutcome], task: TaskRequest) -> ConsensusResult:
        return await self.resolve(successful_responses(outcomes), task)
