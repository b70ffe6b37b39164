"""Shared fixtures: sample Move sources and parsed files."""

import pytest

from movescan.config import AnalysisConfig
from movescan.models import SourceFile
from movescan.parsers.move_parser import MoveParser

UNGUARDED_WITHDRAW = """module vault::pool {
    use sui::coin::{Self, Coin};
    use sui::tx_context::{Self, TxContext};

    public entry fun withdraw(pool: &mut Pool, amount: u64, ctx: &mut TxContext) {
        let c = coin_take(pool, amount);
        let sender = tx_context::sender(ctx);
        public_transfer(c, sender);
    }
}
"""

GUARDED_WITHDRAW = """module vault::pool {
    use sui::coin::{Self, Coin};
    use sui::tx_context::{Self, TxContext};

    const E_NOT_OWNER: u64 = 1;

    public entry fun withdraw(cap: &AdminCap, pool: &mut Pool, amount: u64, ctx: &mut TxContext) {
        let sender = tx_context::sender(ctx);
        assert!(cap.owner == sender, E_NOT_OWNER);
        let c = coin_take(pool, amount);
        public_transfer(c, sender);
    }
}
"""

TOKEN_MODULE = """/// A small token module
module 0x42::token {
    use std::string::{Self, String};
    use sui::object::{Self, UID};
    use sui::balance::Balance;

    const MAX_SUPPLY: u64 = 1000000;
    const NAME: vector<u8> = b"Token {v1}";

    public struct Vault<phantom T> has key, store {
        id: UID,
        reserve: Balance<T>,
        owner: address,
    }

    struct Receipt has drop {
        amount: u64,
    }

    // fun commented_out() { {
    public fun value<T>(vault: &Vault<T>): u64 {
        balance::value(&vault.reserve)
    }

    public(package) fun split_reserve<T>(vault: &mut Vault<T>, amount: u64): Balance<T> {
        balance::split(&mut vault.reserve, amount)
    }

    public(friend) fun label(): String {
        string::utf8(b"}")
    }

    fun helper(x: u64, y: vector<Table<u64, vector<u8>>>): (u64, bool) {
        (x, true)
    }

    entry fun poke(vault: &mut Vault<SUI>, ctx: &mut TxContext) {
        let _ = helper(1, vector[]);
    }
}
"""


@pytest.fixture
def config() -> AnalysisConfig:
    return AnalysisConfig(parallel_rules=False)


@pytest.fixture
def parser() -> MoveParser:
    return MoveParser()


@pytest.fixture
def unguarded_source() -> SourceFile:
    return SourceFile(name="pool.move", content=UNGUARDED_WITHDRAW)


@pytest.fixture
def guarded_source() -> SourceFile:
    return SourceFile(name="pool.move", content=GUARDED_WITHDRAW)


@pytest.fixture
def token_source() -> SourceFile:
    return SourceFile(name="sources/token.move", content=TOKEN_MODULE)


def parse(content: str, name: str = "test.move"):
    """Extract a single in-memory Move file."""
    return MoveParser().extract(SourceFile(name=name, content=content))


def wrap_module(body: str, name: str = "demo::m") -> str:
    """Wrap function declarations in a module block."""
    return f"module {name} {{\n{body}\n}}\n"
