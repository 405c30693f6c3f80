"""Minimal contract ABIs: only the functions the rebalancer calls."""

from __future__ import annotations

from typing import Any


def _fn(name: str, inputs: list[tuple[str, str]], outputs: list[str], mutability: str = "view") -> dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": [{"name": "", "type": t} for t in outputs],
        "stateMutability": mutability,
    }


MARKET_FACTORY_ABI = [
    _fn("getActiveMatches", [], ["uint256[]"]),
    _fn("lmsrMarketMakers", [("matchId", "uint256")], ["address"]),
    _fn("matchConditionIds", [("matchId", "uint256")], ["bytes32"]),
    _fn("conditionalTokens", [], ["address"]),
    _fn("usdc", [], ["address"]),
]

LMSR_MARKET_MAKER_ABI = [
    _fn("funding", [], ["uint256"]),
    _fn("calcMarginalPrice", [("outcomeTokenIndex", "uint8")], ["uint256"]),
    _fn("calcNetCost", [("outcomeTokenAmounts", "int256[]")], ["int256"]),
    _fn(
        "trade",
        [("outcomeTokenAmounts", "int256[]"), ("collateralLimit", "int256")],
        ["int256"],
        "nonpayable",
    ),
]

CONDITIONAL_TOKENS_ABI = [
    _fn(
        "getCollectionId",
        [("parentCollectionId", "bytes32"), ("conditionId", "bytes32"), ("indexSet", "uint256")],
        ["bytes32"],
    ),
    _fn("getPositionId", [("collateralToken", "address"), ("collectionId", "bytes32")], ["uint256"], "pure"),
    _fn("balanceOf", [("owner", "address"), ("id", "uint256")], ["uint256"]),
    _fn("isApprovedForAll", [("owner", "address"), ("operator", "address")], ["bool"]),
    _fn("setApprovalForAll", [("operator", "address"), ("approved", "bool")], [], "nonpayable"),
    _fn("getOutcomeSlotCount", [("conditionId", "bytes32")], ["uint256"]),
    _fn("payoutNumerators", [("conditionId", "bytes32"), ("index", "uint256")], ["uint256"]),
    _fn("payoutDenominator", [("conditionId", "bytes32")], ["uint256"]),
    _fn(
        "splitPosition",
        [
            ("collateralToken", "address"),
            ("parentCollectionId", "bytes32"),
            ("conditionId", "bytes32"),
            ("partition", "uint256[]"),
            ("amount", "uint256"),
        ],
        [],
        "nonpayable",
    ),
    _fn(
        "redeemPositions",
        [
            ("collateralToken", "address"),
            ("parentCollectionId", "bytes32"),
            ("conditionId", "bytes32"),
            ("indexSets", "uint256[]"),
        ],
        [],
        "nonpayable",
    ),
]

ERC20_ABI = [
    _fn("balanceOf", [("account", "address")], ["uint256"]),
    _fn("approve", [("spender", "address"), ("amount", "uint256")], ["bool"], "nonpayable"),
    _fn("decimals", [], ["uint8"]),
]

ZERO_BYTES32 = b"\x00" * 32
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
