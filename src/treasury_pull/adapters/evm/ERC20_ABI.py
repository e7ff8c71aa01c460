"""
ERC20 + Treasury Puller + Allowance Router ABI Module

This module provides minimal ABI definitions for the contracts the treasury
service talks to: the ERC20 token being pulled, the treasury puller contract
exposing the delegated-pull entry points, and the allowance router (Permit2)
metadata used for a best-effort sanity probe.

Usage:
    from ERC20_ABI import (
        get_erc20_abi,
        get_treasury_puller_abi,
        get_router_probe_abi,
    )

    # Query balance
    token = web3.eth.contract(address=token_address, abi=get_erc20_abi())

    # Pull tokens with a stored signature
    puller = web3.eth.contract(address=puller_address, abi=get_treasury_puller_abi())
"""

from typing import Dict, Any, List


def _view(name: str, inputs: List[Dict[str, str]], outputs: List[Dict[str, str]]) -> Dict[str, Any]:
    return {
        "name": name,
        "type": "function",
        "stateMutability": "view",
        "inputs": inputs,
        "outputs": outputs,
    }


def _nonpayable(name: str, inputs: List[Dict[str, str]], outputs: List[Dict[str, str]]) -> Dict[str, Any]:
    return {
        "name": name,
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": inputs,
        "outputs": outputs,
    }


def get_erc20_abi() -> List[Dict[str, Any]]:
    """
    Get ABI for the ERC20 functions used by the service.

    Covers ``approve``, ``allowance``, ``balanceOf``, ``decimals``, ``symbol``
    and ``name``.

    Returns:
        List[Dict[str, Any]]: ERC20 ABI subset

    Example:
        contract = web3.eth.contract(address=token_address, abi=get_erc20_abi())
        balance = await contract.functions.balanceOf(owner).call()
    """
    return [
        _nonpayable(
            "approve",
            [{"name": "spender", "type": "address"}, {"name": "amount", "type": "uint256"}],
            [{"name": "", "type": "bool"}],
        ),
        _view(
            "allowance",
            [{"name": "owner", "type": "address"}, {"name": "spender", "type": "address"}],
            [{"name": "", "type": "uint256"}],
        ),
        _view(
            "balanceOf",
            [{"name": "owner", "type": "address"}],
            [{"name": "", "type": "uint256"}],
        ),
        _view("decimals", [], [{"name": "", "type": "uint8"}]),
        _view("symbol", [], [{"name": "", "type": "string"}]),
        _view("name", [], [{"name": "", "type": "string"}]),
    ]


def get_treasury_puller_abi() -> List[Dict[str, Any]]:
    """
    Get ABI for the treasury puller contract.

    Functions:
        - pullTokensDirect(user, token, amount): pull using a plain ERC20 allowance
        - pullTokensWithPermit2(user, token, amount, deadline, nonce, signature):
          pull using the user's off-chain signature
        - treasury(): address receiving pulled tokens
        - updateTreasury(_treasury): owner-only treasury rotation
        - checkAuthorization(user, token): returns (isAuthorized, isValid)

    Returns:
        List[Dict[str, Any]]: Treasury puller ABI
    """
    return [
        _nonpayable(
            "pullTokensDirect",
            [
                {"name": "user", "type": "address"},
                {"name": "token", "type": "address"},
                {"name": "amount", "type": "uint256"},
            ],
            [],
        ),
        _nonpayable(
            "pullTokensWithPermit2",
            [
                {"name": "user", "type": "address"},
                {"name": "token", "type": "address"},
                {"name": "amount", "type": "uint256"},
                {"name": "deadline", "type": "uint256"},
                {"name": "nonce", "type": "uint256"},
                {"name": "signature", "type": "bytes"},
            ],
            [],
        ),
        _view("treasury", [], [{"name": "", "type": "address"}]),
        _nonpayable("updateTreasury", [{"name": "_treasury", "type": "address"}], []),
        _view(
            "checkAuthorization",
            [{"name": "user", "type": "address"}, {"name": "token", "type": "address"}],
            [{"name": "", "type": "bool"}, {"name": "", "type": "bool"}],
        ),
    ]


def get_router_probe_abi() -> List[Dict[str, Any]]:
    """
    Get ABI for the allowance router metadata probe.

    Only used to log whether the router is deployed on the connected network.
    """
    return [
        _view("name", [], [{"name": "", "type": "string"}]),
        _view("version", [], [{"name": "", "type": "string"}]),
        _view("DOMAIN_SEPARATOR", [], [{"name": "", "type": "bytes32"}]),
    ]
