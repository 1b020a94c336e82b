import asyncio
from typing import Dict, Iterable, List, Tuple

from quorum.aggregator.core.errors import StakeResolutionFailure
from quorum.aggregator.network.ledger import StakeLedger
from quorum.utils.custom_logger import get_logger

logger = get_logger(__name__)


class StakeResolver:
    """
    Maps operator identities to the stake they hold in this service.

    An operator's stake is the raw sum of ``total_assets`` over every vault it has
    staked into ``service_address``. Vaults may hold different assets; the sum is
    not normalized across them.
    """

    def __init__(self, ledger: StakeLedger, service_address: str):
        self.ledger = ledger
        self.service_address = service_address

    async def _stake_of(self, identity: str) -> int:
        try:
            vaults = await self.ledger.fetch_vaults_staked_in_service(identity, self.service_address)
            assets = await asyncio.gather(*(self.ledger.vault_total_assets(v) for v in vaults))
        except Exception as e:
            raise StakeResolutionFailure(identity, e) from e
        stake = sum(int(a) for a in assets)
        logger.debug(f"Stake of {identity}: {stake} across {len(vaults)} vault(s)")
        return stake

    async def resolve_stakes(self, identities: Iterable[str], min_stake: int = 0) -> Tuple[Dict[str, int], int]:
        """
        Returns (identity -> stake, total stake) for identities holding more than ``min_stake``.

        Raises:
            StakeResolutionFailure: if any lookup fails.
        """
        ordered: List[str] = list(dict.fromkeys(identities))
        results = await asyncio.gather(*(self._stake_of(i) for i in ordered), return_exceptions=True)

        stakes: Dict[str, int] = {}
        for identity, result in zip(ordered, results):
            if isinstance(result, BaseException):
                raise result
            if result <= min_stake:
                logger.debug(f"Excluding {identity}: stake {result} <= {min_stake}")
                continue
            stakes[identity] = result
        return stakes, sum(stakes.values())
