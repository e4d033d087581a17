"""
Tests for the rainbow table core: modulus, reduction, chains, build, lookup.
"""

import itertools
import random

import pytest
from cryptography.exceptions import UnsupportedAlgorithm

from rainbow import (
    RainbowConfig,
    RainbowTable,
    build_table,
    check_digest,
    generate_chain,
    hash_password,
    is_probable_prime,
    iter_chain,
    lookup,
    lookup_chain,
    next_prime,
    prime_modulus,
    random_password,
    reduce_hash,
    resolve_hash,
)


class ScriptedChoice:
    """Random source replaying a fixed sequence of symbols forever."""

    def __init__(self, symbols):
        self._symbols = itertools.cycle(symbols)

    def choice(self, seq):
        symbol = next(self._symbols)
        assert symbol in seq
        return symbol


SHA1, SHA1_LEN = resolve_hash("sha1")


def all_passwords(charset, length):
    return ["".join(p) for p in itertools.product(charset, repeat=length)]


# --- hash collaborator ---

def test_resolve_sha1_matches_known_digest():
    assert SHA1_LEN == 40
    assert hash_password("a", SHA1) == "86f7e437faa5a7fce15d1ddcb9eaeaea377667b8"
    assert hash_password("", SHA1) == "da39a3ee5e6b4b0d3255bfef95601890afd80709"


def test_resolve_other_algorithms():
    sha256, length = resolve_hash("SHA256")
    assert length == 64
    assert hash_password("abc", sha256) == (
        "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
    )
    _, blake_len = resolve_hash("blake2b")
    assert blake_len == 128


def test_unknown_hash_is_fatal():
    with pytest.raises(UnsupportedAlgorithm):
        resolve_hash("rot13")
    with pytest.raises(UnsupportedAlgorithm):
        RainbowTable("01", 2, 2, 1, hash_name="whirlpool-ish")


# --- modulus ---

def test_small_primes():
    primes = [n for n in range(50) if is_probable_prime(n)]
    assert primes == [2, 3, 5, 7, 11, 13, 17, 19, 23, 29, 31, 37, 41, 43, 47]


def test_carmichael_numbers_are_composite():
    for n in (561, 1105, 1729, 2465, 2821, 6601, 8911):
        assert not is_probable_prime(n)


def test_next_prime_is_inclusive():
    assert next_prime(7) == 7
    assert next_prime(6) == 7
    assert next_prime(0) == 2
    assert next_prime(24) == 29
    # 2^61 - 1 is a Mersenne prime
    assert next_prime(2 ** 61 - 1) == 2 ** 61 - 1


def test_prime_modulus_scenario():
    assert prime_modulus(2, 2) == 7


@pytest.mark.parametrize("charset_size,length", [(2, 2), (10, 3), (36, 5), (62, 8), (95, 12)])
def test_prime_modulus_bound(charset_size, length):
    space = sum(charset_size ** i for i in range(1, length + 1))
    modulus = prime_modulus(charset_size, length)
    assert modulus >= space
    assert is_probable_prime(modulus)
    # nothing prime between the bound and the modulus
    assert all(not is_probable_prime(n) for n in range(space, modulus))


# --- configuration ---

def test_config_validation():
    with pytest.raises(ValueError):
        RainbowConfig("", 2, 2, 1)
    with pytest.raises(ValueError):
        RainbowConfig("aab", 2, 2, 1)
    with pytest.raises(ValueError):
        RainbowConfig("ab", 0, 2, 1)
    with pytest.raises(ValueError):
        RainbowConfig("ab", 2, 0, 1)
    with pytest.raises(ValueError):
        RainbowConfig("ab", 2, 2, 0)


def test_config_is_immutable():
    config = RainbowConfig("01", 2, 2, 1)
    with pytest.raises(AttributeError):
        config.chain_length = 5
    assert config.password_space() == 6
    assert config == RainbowConfig("01", 2, 2, 1, "SHA1")


# --- reduction ---

def test_reduce_is_little_endian_base_charset():
    # 11 = 1 + 1*2 + 0*4 + 1*8, least significant digit first
    assert reduce_hash("0b", 0, "01", 13) == "1101"
    assert reduce_hash("0b", 1, "01", 13) == "0011"
    assert reduce_hash("05", 0, "abc", 7) == "cb"


def test_reduce_zero_residue_is_empty():
    assert reduce_hash("07", 0, "01", 7) == ""
    assert reduce_hash("06", 1, "01", 7) == ""


def test_reduce_depends_on_position():
    h = hash_password("00", SHA1)
    outputs = {reduce_hash(h, i, "0123456789", prime_modulus(10, 6)) for i in range(20)}
    assert len(outputs) == 20


def test_reduce_uses_only_charset_symbols():
    charset = "xyz"
    modulus = prime_modulus(len(charset), 4)
    for i in range(50):
        h = hash_password(str(i), SHA1)
        out = reduce_hash(h, i, charset, modulus)
        assert set(out) <= set(charset)
        # variable length, never more than one digit past the password length
        assert len(out) <= 5


# --- chains ---

def test_chain_is_deterministic():
    modulus = prime_modulus(4, 3)
    for start in all_passwords("abcd", 3):
        first = generate_chain(start, 25, "abcd", modulus, SHA1)
        assert first == generate_chain(start, 25, "abcd", modulus, SHA1)


def test_iter_chain_matches_manual_walk():
    modulus = prime_modulus(2, 2)
    steps = list(iter_chain("00", 3, "01", modulus, SHA1))
    password = "00"
    for position, (pos, h, nxt) in enumerate(steps):
        assert pos == position
        assert h == hash_password(password, SHA1)
        assert nxt == reduce_hash(h, position, "01", modulus)
        password = nxt
    assert generate_chain("00", 3, "01", modulus, SHA1) == password


def test_random_password_draws_from_charset():
    rng = random.Random(1)
    for _ in range(100):
        pw = random_password(6, "ab#", rng)
        assert len(pw) == 6
        assert set(pw) <= set("ab#")


# --- concrete scenario: charset "01", L = 2, N = 2 ---

def test_two_symbol_scenario():
    rt = RainbowTable("01", 2, 2, 1, rng=ScriptedChoice("0"))
    assert rt.modulus == 7

    e0 = rt.hash("00")
    p1 = rt.reduce(e0, 0)
    e1 = rt.hash(p1)
    endpoint = rt.reduce(e1, 1)

    table = rt.build()
    assert table == {endpoint: "00"}
    assert rt.meta["attempts"] == 1
    assert rt.meta["collisions"] == 0

    assert rt.lookup(e1) == p1
    assert rt.lookup(e0) == "00"


# --- build ---

def test_build_reaches_target_count():
    config = RainbowConfig("abcdefgh", 5, 20, 200)
    modulus = prime_modulus(8, 5)
    table, meta = build_table(config, modulus, SHA1, rng=random.Random(99))

    assert len(table) == 200
    assert meta["attempts"] == 200 + meta["collisions"]
    assert meta["method"] == "serial"
    for endpoint, start in table.items():
        assert len(start) == 5
        assert generate_chain(start, 20, "abcdefgh", modulus, SHA1) == endpoint


def test_build_is_reproducible_with_seed():
    a = RainbowTable("abcdef", 4, 10, 10, rng=random.Random(5))
    b = RainbowTable("abcdef", 4, 10, 10, rng=random.Random(5))
    assert a.build() == b.build()


def test_collisions_are_discarded_not_merged():
    charset, length, chain_length = "01", 2, 3
    modulus = prime_modulus(2, 2)
    starts = all_passwords(charset, length)
    reachable = {generate_chain(s, chain_length, charset, modulus, SHA1) for s in starts}

    # "00" twice in a row guarantees at least one collision
    script = "0000" + "".join(starts)
    config = RainbowConfig(charset, length, chain_length, len(reachable))
    table, meta = build_table(config, modulus, SHA1, rng=ScriptedChoice(script))

    assert set(table) == reachable
    assert len(table) == len(reachable)
    assert meta["collisions"] >= 1
    assert meta["attempts"] == len(reachable) + meta["collisions"]
    for endpoint, start in table.items():
        assert generate_chain(start, chain_length, charset, modulus, SHA1) == endpoint


def test_build_twice_is_rejected():
    rt = RainbowTable("01", 2, 2, 1, rng=random.Random(0))
    rt.build()
    with pytest.raises(RuntimeError):
        rt.build()


def test_build_verbose_prints_summary(capsys):
    rt = RainbowTable("01", 2, 2, 1, rng=random.Random(0))
    rt.build(verbose=True)
    out = capsys.readouterr().out
    assert "prime modulus: 7" in out
    assert "chains: 1 length: 2" in out


# --- lookup ---

def test_lookup_finds_every_password_on_stored_chains():
    rt = RainbowTable("abcdefgh", 4, 15, 40, rng=random.Random(2024))
    rt.build()

    for start in rt.table.values():
        for _position, h, _next in iter_chain(start, 15, rt.config.charset, rt.modulus, rt._hash):
            found = rt.lookup(h)
            assert found is not None
            assert rt.hash(found) == h


def test_lookup_never_returns_mismatching_password():
    rt = RainbowTable("0123", 5, 12, 20, rng=random.Random(11))
    rt.build()
    for candidate in ["zzz", "hello", "9999", "abc"]:
        target = rt.hash(candidate)
        found = rt.lookup(target)
        assert found is None or rt.hash(found) == target


def test_lookup_outside_space_is_not_found():
    rt = RainbowTable("01", 2, 2, 1, rng=ScriptedChoice("0"))
    rt.build()
    assert rt.lookup(rt.hash("not-in-the-space")) is None


def test_lookup_chain_false_alarm():
    modulus = prime_modulus(2, 2)
    other = hash_password("other", SHA1)
    assert lookup_chain("00", other, 2, "01", modulus, SHA1) is None


def test_module_lookup_matches_facade():
    rt = RainbowTable("abcdef", 4, 8, 10, rng=random.Random(3))
    rt.build()
    start = next(iter(rt.table.values()))
    target = rt.hash(start)
    assert lookup(target, rt.table, 8, "abcdef", rt.modulus, rt._hash) == rt.lookup(target) == start


def test_lookup_accepts_uppercase_digest():
    rt = RainbowTable("01", 2, 2, 1, rng=ScriptedChoice("0"))
    rt.build()
    assert rt.lookup(rt.hash("00").upper()) == "00"


@pytest.mark.parametrize("bad", [
    "",
    "abc",
    "86f7e437faa5a7fce15d1ddcb9eaeaea377667b",
    "86f7e437faa5a7fce15d1ddcb9eaeaea377667b8ff",
    "z6f7e437faa5a7fce15d1ddcb9eaeaea377667b8",
    "-6f7e437faa5a7fce15d1ddcb9eaeaea377667b8",
    "86f7_437faa5a7fce15d1ddcb9eaeaea377667b8",
])
def test_malformed_digest_rejected(bad):
    rt = RainbowTable("01", 2, 2, 1, rng=ScriptedChoice("0"))
    rt.build()
    with pytest.raises(ValueError):
        rt.lookup(bad)


def test_check_digest_rejects_non_strings():
    with pytest.raises(ValueError):
        check_digest(b"86f7e437faa5a7fce15d1ddcb9eaeaea377667b8", 40)


def test_lookup_before_build():
    rt = RainbowTable("01", 2, 2, 1)
    with pytest.raises(RuntimeError):
        rt.lookup(rt.hash("00"))


def test_chain_password_walks_columns():
    rt = RainbowTable("abcdef", 4, 8, 5, rng=random.Random(6))
    rt.build()
    for endpoint, start in rt.table.items():
        assert rt.chain_password(start, 0) == start
        assert rt.chain_password(start, 8) == endpoint == rt.generate_chain(start)
        assert rt.chain_password(start, 3) == rt.reduce(rt.hash(rt.chain_password(start, 2)), 2)
