"""Collateral-registry based adapter for Liquity V2 and its forks."""

import asyncio
import logging

from services.indexer.src.indexer.adapters.base import ProtocolAdapter
from services.indexer.src.indexer.adapters.liquity_v2.config import DeploymentConfig, ProtocolConfig
from services.indexer.src.indexer.adapters.liquity_v2.events import (
    TROVE_MANAGER_EVENTS,
    operation_of,
)
from services.indexer.src.indexer.domain.models import (
    ColPoolData,
    CoreColImmutables,
    CoreImmutablesEntry,
    CorePoolDataEntry,
    EventDataEntry,
    TroveData,
    TroveDataEntry,
    TroveOwnerEntry,
    TroveStatus,
)
from services.indexer.src.indexer.errors import RemoteReadError
from services.indexer.src.indexer.gateway.abi import ContractFunction
from services.indexer.src.indexer.gateway.base import ChainReader
from services.indexer.src.indexer.gateway.explorer import CreationCodeFetcher
from services.indexer.src.indexer.utils.concurrency import DEFAULT_CONCURRENCY, gather_with_concurrency
from services.indexer.src.indexer.utils.error_log import ErrorLogger, LogKeyword

logger = logging.getLogger(__name__)

fn = ContractFunction.parse

# Collateral registry
TOTAL_COLLATERALS = fn("totalCollaterals()->(uint256)")
GET_TROVE_MANAGER = fn("getTroveManager(uint256)->(address)")
BOLD_TOKEN = fn("boldToken()->(address)")
BASE_RATE = fn("baseRate()->(uint256)")
GET_REDEMPTION_RATE = fn("getRedemptionRate()->(uint256)")

# Trove manager
GET_TROVE_IDS_COUNT = fn("getTroveIdsCount()->(uint256)")
GET_TROVE_FROM_TROVE_IDS_ARRAY = fn("getTroveFromTroveIdsArray(uint256)->(uint256)")
TROVES = fn(
    "Troves(uint256)->(uint256,uint256,uint256,uint8,uint64,uint64,uint64,uint256,address,uint256)"
)
# LatestTroveData struct, entireDebt first
GET_LATEST_TROVE_DATA = fn(
    "getLatestTroveData(uint256)->"
    "(uint256,uint256,uint256,uint256,uint256,uint256,uint256,uint256,uint256,uint256)"
)
ACTIVE_POOL = fn("activePool()->(address)")
GET_ENTIRE_SYSTEM_COLL = fn("getEntireSystemColl()->(uint256)")
GET_ENTIRE_SYSTEM_DEBT = fn("getEntireSystemDebt()->(uint256)")

# Addresses registry (CCR/SCR/MCR also live on borrower operations)
CCR = fn("CCR()->(uint256)")
SCR = fn("SCR()->(uint256)")
MCR = fn("MCR()->(uint256)")
INTEREST_ROUTER = fn("interestRouter()->(address)")
COLL_TOKEN = fn("collToken()->(address)")
STABILITY_POOL = fn("stabilityPool()->(address)")
SORTED_TROVES = fn("sortedTroves()->(address)")
TROVE_NFT = fn("troveNFT()->(address)")
PRICE_FEED = fn("priceFeed()->(address)")
RATE_PROVIDER_ADDRESS = fn("rateProviderAddress()->(address)")
DECIMALS = fn("decimals()->(uint8)")
OWNER_OF = fn("ownerOf(uint256)->(address)")

# Active pool
DEFAULT_POOL_ADDRESS = fn("defaultPoolAddress()->(address)")
BORROWER_OPERATIONS_ADDRESS = fn("borrowerOperationsAddress()->(address)")
AGG_WEIGHTED_RECORDED_DEBT_SUM = fn("aggWeightedRecordedDebtSum()->(uint256)")
AGG_RECORDED_DEBT = fn("aggRecordedDebt()->(uint256)")
CALC_PENDING_AGG_INTEREST = fn("calcPendingAggInterest()->(uint256)")
CALC_PENDING_SP_YIELD = fn("calcPendingSPYield()->(uint256)")
LAST_AGG_UPDATE_TIME = fn("lastAggUpdateTime()->(uint256)")

# Stability pool
GET_COLL_BALANCE = fn("getCollBalance()->(uint256)")
GET_TOTAL_BOLD_DEPOSITS = fn("getTotalBoldDeposits()->(uint256)")
GET_YIELD_GAINS_OWED = fn("getYieldGainsOwed()->(uint256)")
GET_YIELD_GAINS_PENDING = fn("getYieldGainsPending()->(uint256)")

# Burned (closed) trove NFTs have no owner
OWNED_STATUSES = {TroveStatus.ACTIVE, TroveStatus.ZOMBIE}


def addresses_registry_from_creation_code(bytecode: str) -> str:
    """The addresses registry is the trove manager's last constructor argument."""
    body = bytecode.removeprefix("0x")
    if len(body) < 40:
        raise ValueError("Creation bytecode too short to hold an address")
    return "0x" + body[-40:].lower()


class LiquityV2Adapter(ProtocolAdapter):
    def __init__(
        self,
        config: ProtocolConfig,
        reader: ChainReader,
        creation_code_fetcher: CreationCodeFetcher | None = None,
        error_logger: ErrorLogger | None = None,
        concurrency: int = DEFAULT_CONCURRENCY,
    ):
        self.config = config
        self.protocol_id = config.protocol_id
        self.name = config.name
        self.reader = reader
        self.creation_code_fetcher = creation_code_fetcher
        self.error_logger = error_logger or ErrorLogger()
        self.concurrency = concurrency

    @property
    def chains(self) -> list[str]:
        return self.config.chains

    def _deployment(self, chain: str) -> DeploymentConfig:
        return self.config.get_deployment(chain)

    async def get_trove_managers(self, chain: str, block: int | None = None) -> list[str]:
        registry = self._deployment(chain).collateral_registry
        return await self.reader.fetch_list(
            chain, registry, TOTAL_COLLATERALS, GET_TROVE_MANAGER, block
        )

    # Troves

    async def fetch_troves(self, chain: str, block: int) -> list[TroveDataEntry]:
        trove_managers = await self.get_trove_managers(chain, block)
        return await gather_with_concurrency(
            (
                self._fetch_trove_manager_troves(chain, index, tm, block)
                for index, tm in enumerate(trove_managers)
            ),
            limit=self.concurrency,
        )

    async def _fetch_trove_manager_troves(
        self, chain: str, index: int, trove_manager: str, block: int
    ) -> TroveDataEntry:
        trove_ids = await self.reader.fetch_list(
            chain, trove_manager, GET_TROVE_IDS_COUNT, GET_TROVE_FROM_TROVE_IDS_ARRAY, block
        )
        calls = [(trove_manager, (trove_id,)) for trove_id in trove_ids]
        troves = await self.reader.multi_call(chain, TROVES, calls, block)

        try:
            latest = await self.reader.multi_call(chain, GET_LATEST_TROVE_DATA, calls, block)
            entire_debts = [row[0] for row in latest]
        except RemoteReadError as e:
            self.error_logger.error(
                e, LogKeyword.MISSING_VALUES, chain=chain, protocol_id=self.protocol_id,
                function="fetch_troves", table="trove_data",
            )
            entire_debts = [None] * len(trove_ids)

        result = []
        for trove_id, row, entire_debt in zip(trove_ids, troves, entire_debts):
            (debt, coll, stake, status, array_index, last_debt_update_time,
             last_interest_rate_adj_time, annual_interest_rate, batch_manager, batch_shares) = row
            result.append(TroveData(
                trove_id=str(trove_id),
                debt=debt,
                coll=coll,
                stake=stake,
                status=int(status),
                array_index=array_index,
                last_debt_update_time=last_debt_update_time,
                last_interest_rate_adj_time=last_interest_rate_adj_time,
                annual_interest_rate=annual_interest_rate,
                interest_batch_manager=batch_manager,
                batch_debt_shares=batch_shares,
                entire_debt=entire_debt,
            ))

        return TroveDataEntry(
            chain=chain,
            protocol_id=self.protocol_id,
            trove_manager_index=index,
            block_number=block,
            troves=result,
        )

    async def fetch_trove_owners(
        self, chain: str, block: int, troves: list[TroveDataEntry]
    ) -> list[TroveOwnerEntry]:
        trove_managers = await self.get_trove_managers(chain, block)
        nfts = await self.reader.multi_call(
            chain, TROVE_NFT, [(tm, ()) for tm in trove_managers], block
        )

        owners = []
        for entry in troves:
            trove_ids = [t.trove_id for t in entry.troves if t.status in OWNED_STATUSES]
            nft = nfts[entry.trove_manager_index]
            addresses = await self.reader.multi_call(
                chain, OWNER_OF, [(nft, (trove_id,)) for trove_id in trove_ids], block
            )
            owners.append(TroveOwnerEntry(
                chain=chain,
                protocol_id=self.protocol_id,
                trove_manager_index=entry.trove_manager_index,
                block_number=block,
                owners=dict(zip(trove_ids, addresses)),
            ))
        return owners

    # Immutables

    async def fetch_immutables(self, chain: str, block: int) -> CoreImmutablesEntry:
        deployment = self._deployment(chain)
        registry = deployment.collateral_registry
        bold_token = await self.reader.call(chain, registry, BOLD_TOKEN, (), block)
        trove_managers = await self.get_trove_managers(chain, block)
        active_pools = await self.reader.multi_call(
            chain, ACTIVE_POOL, [(tm, ()) for tm in trove_managers], block
        )

        col_immutables = await gather_with_concurrency(
            (
                self._fetch_col_immutables(chain, deployment, index, tm, active_pools[index], block)
                for index, tm in enumerate(trove_managers)
            ),
            limit=self.concurrency,
        )
        routers = [router for router, _ in col_immutables]

        return CoreImmutablesEntry(
            chain=chain,
            protocol_id=self.protocol_id,
            block_number=block,
            bold_token=bold_token,
            collateral_registry=registry.lower(),
            interest_router=routers[0] if routers else "",
            col_immutables=[c for _, c in col_immutables],
        )

    async def _addresses_registry(
        self, chain: str, deployment: DeploymentConfig, index: int, trove_manager: str
    ) -> str | None:
        if index in deployment.address_registry_overrides:
            return deployment.address_registry_overrides[index].lower()
        if self.creation_code_fetcher is None:
            return None
        try:
            bytecode = await self.creation_code_fetcher.fetch_creation_bytecode(chain, trove_manager)
            return addresses_registry_from_creation_code(bytecode)
        except (RemoteReadError, ValueError) as e:
            self.error_logger.error(
                e, LogKeyword.MISSING_VALUES, chain=chain, protocol_id=self.protocol_id,
                function="fetch_immutables", table="core_col_immutables",
            )
            return None

    async def _fetch_col_immutables(
        self,
        chain: str,
        deployment: DeploymentConfig,
        index: int,
        trove_manager: str,
        active_pool: str,
        block: int,
    ) -> tuple[str, CoreColImmutables]:
        """Returns (interest router, immutables) of one trove manager."""
        read = self.reader.call
        registry = await self._addresses_registry(chain, deployment, index, trove_manager)

        if registry is not None:
            (ccr, scr, mcr, interest_router, coll_token, stability_pool, sorted_troves,
             trove_nft, price_feed, default_pool, borrower_operations) = await asyncio.gather(
                read(chain, registry, CCR, (), block),
                read(chain, registry, SCR, (), block),
                read(chain, registry, MCR, (), block),
                read(chain, registry, INTEREST_ROUTER, (), block),
                read(chain, registry, COLL_TOKEN, (), block),
                read(chain, registry, STABILITY_POOL, (), block),
                read(chain, registry, SORTED_TROVES, (), block),
                read(chain, registry, TROVE_NFT, (), block),
                read(chain, registry, PRICE_FEED, (), block),
                read(chain, active_pool, DEFAULT_POOL_ADDRESS, (), block),
                read(chain, active_pool, BORROWER_OPERATIONS_ADDRESS, (), block),
            )
            try:
                rate_provider = await read(chain, price_feed, RATE_PROVIDER_ADDRESS, (), block)
            except RemoteReadError:
                rate_provider = None
        else:
            logger.warning(
                f"Addresses registry for trove manager {index} ({trove_manager}) on {chain} "
                "unavailable, reading immutables from the pools; price feed left empty"
            )
            borrower_operations = await read(chain, active_pool, BORROWER_OPERATIONS_ADDRESS, (), block)
            (ccr, scr, mcr, coll_token, default_pool, stability_pool, interest_router,
             sorted_troves, trove_nft) = await asyncio.gather(
                read(chain, borrower_operations, CCR, (), block),
                read(chain, borrower_operations, SCR, (), block),
                read(chain, borrower_operations, MCR, (), block),
                read(chain, active_pool, COLL_TOKEN, (), block),
                read(chain, active_pool, DEFAULT_POOL_ADDRESS, (), block),
                read(chain, active_pool, STABILITY_POOL, (), block),
                read(chain, active_pool, INTEREST_ROUTER, (), block),
                read(chain, trove_manager, SORTED_TROVES, (), block),
                read(chain, trove_manager, TROVE_NFT, (), block),
            )
            price_feed = None
            rate_provider = None

        decimals = await read(chain, coll_token, DECIMALS, (), block)

        return interest_router, CoreColImmutables(
            trove_manager_index=index,
            ccr=ccr,
            scr=scr,
            mcr=mcr,
            trove_manager=trove_manager,
            coll_token=coll_token,
            coll_token_decimals=int(decimals),
            active_pool=active_pool,
            default_pool=default_pool,
            stability_pool=stability_pool,
            borrower_operations=borrower_operations,
            sorted_troves=sorted_troves,
            trove_nft=trove_nft,
            price_feed=price_feed,
            is_lst=(rate_provider is not None) if price_feed is not None else None,
            rate_provider_address=rate_provider,
        )

    # Pool data

    async def fetch_pool_data(
        self, chain: str, block: int, immutables: CoreImmutablesEntry | None = None
    ) -> CorePoolDataEntry:
        registry = self._deployment(chain).collateral_registry
        if immutables is None:
            immutables = await self.fetch_immutables(chain, block)

        base_rate, redemption_rate, total_collaterals = await asyncio.gather(
            self.reader.call(chain, registry, BASE_RATE, (), block),
            self.reader.call(chain, registry, GET_REDEMPTION_RATE, (), block),
            self.reader.call(chain, registry, TOTAL_COLLATERALS, (), block),
        )

        cols = sorted(immutables.col_immutables, key=lambda c: c.trove_manager_index)
        if len(cols) != int(total_collaterals):
            logger.warning(
                f"{self.name} on {chain} has {len(cols)} collaterals stored but the registry "
                f"reports {total_collaterals}; reading pool data for the stored ones"
            )

        async def read_all(function: ContractFunction, targets: list[str]) -> list:
            return await self.reader.multi_call(chain, function, [(t, ()) for t in targets], block)

        trove_managers = [c.trove_manager for c in cols]
        active_pools = [c.active_pool for c in cols]
        stability_pools = [c.stability_pool for c in cols]
        columns = await asyncio.gather(
            read_all(GET_ENTIRE_SYSTEM_COLL, trove_managers),
            read_all(GET_ENTIRE_SYSTEM_DEBT, trove_managers),
            read_all(GET_TROVE_IDS_COUNT, trove_managers),
            read_all(AGG_WEIGHTED_RECORDED_DEBT_SUM, active_pools),
            read_all(AGG_RECORDED_DEBT, active_pools),
            read_all(CALC_PENDING_AGG_INTEREST, active_pools),
            read_all(CALC_PENDING_SP_YIELD, active_pools),
            read_all(LAST_AGG_UPDATE_TIME, active_pools),
            read_all(GET_COLL_BALANCE, stability_pools),
            read_all(GET_TOTAL_BOLD_DEPOSITS, stability_pools),
            read_all(GET_YIELD_GAINS_OWED, stability_pools),
            read_all(GET_YIELD_GAINS_PENDING, stability_pools),
        )

        col_pool_data = [
            ColPoolData(
                trove_manager_index=col.trove_manager_index,
                entire_system_coll=columns[0][i],
                entire_system_debt=columns[1][i],
                trove_ids_count=columns[2][i],
                agg_weighted_recorded_debt_sum=columns[3][i],
                agg_recorded_debt=columns[4][i],
                pending_agg_interest=columns[5][i],
                pending_sp_yield=columns[6][i],
                last_agg_update_time=columns[7][i],
                sp_coll_balance=columns[8][i],
                sp_total_bold_deposits=columns[9][i],
                sp_yield_gains_owed=columns[10][i],
                sp_yield_gains_pending=columns[11][i],
            )
            for i, col in enumerate(cols)
        ]

        return CorePoolDataEntry(
            chain=chain,
            protocol_id=self.protocol_id,
            block_number=block,
            base_rate=base_rate,
            redemption_rate=redemption_rate,
            total_collaterals=total_collaterals,
            col_pool_data=col_pool_data,
        )

    # Events

    async def fetch_events(self, chain: str, from_block: int, to_block: int) -> list[EventDataEntry]:
        trove_managers = await self.get_trove_managers(chain, to_block)
        per_manager = await gather_with_concurrency(
            (
                self._fetch_trove_manager_events(chain, index, tm, from_block, to_block)
                for index, tm in enumerate(trove_managers)
            ),
            limit=self.concurrency,
        )
        events = [e for batch in per_manager for e in batch]
        events.sort(key=lambda e: (e.block_number, e.log_index))
        return events

    async def _fetch_trove_manager_events(
        self, chain: str, index: int, trove_manager: str, from_block: int, to_block: int
    ) -> list[EventDataEntry]:
        events = []
        for spec in TROVE_MANAGER_EVENTS:
            logs = await self.reader.get_logs(chain, trove_manager, spec.topic, from_block, to_block)
            for log in logs:
                try:
                    data = spec.decode(log)
                except Exception as e:
                    logger.warning(
                        f"Skipping undecodable {spec.name} log {log.tx_hash}:{log.log_index} "
                        f"on {chain}: {e}"
                    )
                    self.error_logger.error(
                        e, LogKeyword.MISSING_VALUES, chain=chain, protocol_id=self.protocol_id,
                        function="fetch_events", table="event_data",
                    )
                    continue
                events.append(EventDataEntry(
                    chain=chain,
                    protocol_id=self.protocol_id,
                    trove_manager_index=index,
                    block_number=log.block_number,
                    tx_hash=log.tx_hash,
                    log_index=log.log_index,
                    event_name=spec.name,
                    data=data,
                    operation=operation_of(spec.name, data),
                ))
        return events
