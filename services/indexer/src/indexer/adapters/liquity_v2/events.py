"""TroveManager events indexed for every trove manager."""

from enum import IntEnum

from services.indexer.src.indexer.gateway.abi import EventSpec, parse_event


class TroveOperation(IntEnum):
    OPEN_TROVE = 0
    CLOSE_TROVE = 1
    ADJUST_TROVE = 2
    ADJUST_TROVE_INTEREST_RATE = 3
    APPLY_PENDING_DEBT = 4
    LIQUIDATE = 5
    REDEEM_COLLATERAL = 6
    OPEN_TROVE_AND_JOIN_BATCH = 7
    SET_INTEREST_BATCH_MANAGER = 8
    REMOVE_FROM_BATCH = 9


TROVE_MANAGER_EVENTS: list[EventSpec] = [
    parse_event(
        "TroveOperation(uint256 indexed _troveId, uint8 _operation, uint256 _annualInterestRate, "
        "uint256 _debtIncreaseFromRedist, uint256 _debtIncreaseFromUpfrontFee, "
        "int256 _debtChangeFromOperation, uint256 _collIncreaseFromRedist, "
        "int256 _collChangeFromOperation)"
    ),
    parse_event(
        "TroveUpdated(uint256 indexed _troveId, uint256 _debt, uint256 _coll, uint256 _stake, "
        "uint256 _annualInterestRate, uint256 _snapshotOfTotalCollRedist, "
        "uint256 _snapshotOfTotalDebtRedist)"
    ),
    parse_event(
        "BatchUpdated(address indexed _interestBatchManager, uint8 _operation, uint256 _debt, "
        "uint256 _coll, uint256 _annualInterestRate, uint256 _annualManagementFee, "
        "uint256 _totalDebtShares, uint256 _debtIncreaseFromUpfrontFee)"
    ),
    parse_event(
        "BatchedTroveUpdated(uint256 indexed _troveId, address _interestBatchManager, "
        "uint256 _batchDebtShares, uint256 _coll, uint256 _stake, "
        "uint256 _snapshotOfTotalCollRedist, uint256 _snapshotOfTotalDebtRedist)"
    ),
    parse_event(
        "Redemption(uint256 _attemptedBoldAmount, uint256 _actualBoldAmount, uint256 _ETHSent, "
        "uint256 _ETHFee, uint256 _price, uint256 _redemptionPrice)"
    ),
    parse_event(
        "Liquidation(uint256 _debtOffsetBySP, uint256 _debtRedistributed, "
        "uint256 _boldGasCompensation, uint256 _collGasCompensation, uint256 _collSentToSP, "
        "uint256 _collRedistributed, uint256 _collSurplus, uint256 _L_ETH, uint256 _L_boldDebt, "
        "uint256 _price)"
    ),
]

EVENTS_BY_NAME: dict[str, EventSpec] = {e.name: e for e in TROVE_MANAGER_EVENTS}


def operation_of(event_name: str, data: dict) -> int | None:
    """TroveOperation code of a decoded event, None for other events."""
    if event_name != "TroveOperation":
        return None
    return int(data["operation"])
