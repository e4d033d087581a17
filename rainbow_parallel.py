"""
Rainbow tables on a multiprocessing pool.

Chain generation and the per-column lookup search are independent, so both
spread across cores. The parent process stays the single owner of the table:
workers only compute endpoints, the parent does check-and-insert.
"""

import random
import time
from multiprocessing import Event, Pool, cpu_count
from typing import Dict, List, Optional, Tuple

from rainbow import (
    RainbowConfig,
    generate_chain,
    lookup_position,
    random_password,
    resolve_hash,
)

# Per-process state installed by the pool initializers
_worker: Dict = {}


def _init_chain_worker(charset: str, chain_length: int, modulus: int, hash_name: str):
    hash_fn, _ = resolve_hash(hash_name)
    _worker.clear()
    _worker.update(
        charset=charset,
        chain_length=chain_length,
        modulus=modulus,
        hash_fn=hash_fn,
    )


def _chain_endpoint(start: str) -> str:
    return generate_chain(
        start,
        _worker["chain_length"],
        _worker["charset"],
        _worker["modulus"],
        _worker["hash_fn"],
    )


def build_table_parallel(
    config: RainbowConfig,
    modulus: int,
    rng=None,
    num_cores: Optional[int] = None,
    batch_size: Optional[int] = None,
    verbose: bool = False,
) -> Tuple[Dict[str, str], Dict]:
    """
    Build a rainbow table generating chains on num_cores processes.

    Start passwords are drawn in the parent from rng, in batches, so a seeded
    rng gives the same table as the serial builder. Endpoints come back in
    submission order and are inserted one at a time; once the table is full
    the rest of the batch is dropped without being counted.

    Args:
        config: Table parameters
        modulus: Prime bound for reductions
        rng: Random source with a choice() method (default: random.Random())
        num_cores: Number of worker processes (default: all available)
        batch_size: Start passwords per round (default: 4 per core, at least
            the number of chains still missing)
        verbose: Print progress

    Returns:
        (table, metadata)
    """
    if num_cores is None:
        num_cores = cpu_count()
    if rng is None:
        rng = random.Random()

    table: Dict[str, str] = {}
    collisions = 0
    start_time = time.time()

    with Pool(
        num_cores,
        initializer=_init_chain_worker,
        initargs=(config.charset, config.chain_length, modulus, config.hash_name),
    ) as pool:
        while len(table) < config.num_chains:
            missing = config.num_chains - len(table)
            size = batch_size or max(missing, 4 * num_cores)
            starts: List[str] = [
                random_password(config.password_length, config.charset, rng)
                for _ in range(size)
            ]
            chunksize = max(1, size // (4 * num_cores))
            endpoints = pool.map(_chain_endpoint, starts, chunksize)

            for start, end in zip(starts, endpoints):
                if len(table) >= config.num_chains:
                    break
                if end not in table:
                    table[end] = start
                else:
                    collisions += 1

            if verbose:
                print(f"  {len(table)}/{config.num_chains} chains ({collisions} collisions)")

    elapsed = time.time() - start_time
    if verbose:
        print(f"chains: {config.num_chains} length: {config.chain_length} "
              f"generated in {elapsed:.3f}s ({collisions} collisions) on {num_cores} cores")

    return table, {
        "chains": config.num_chains,
        "attempts": config.num_chains + collisions,
        "collisions": collisions,
        "elapsed": elapsed,
        "num_cores": num_cores,
        "method": "parallel",
    }


def _init_lookup_worker(
    table: Dict[str, str],
    charset: str,
    chain_length: int,
    modulus: int,
    hash_name: str,
    found,
):
    _init_chain_worker(charset, chain_length, modulus, hash_name)
    _worker.update(table=table, found=found)


def _lookup_position_task(args) -> Optional[str]:
    """
    Search one column. Skips the work once another worker has confirmed a
    match.
    """
    position, target_hash = args
    found = _worker["found"]
    if found.is_set():
        return None

    result = lookup_position(
        position,
        target_hash,
        _worker["table"],
        _worker["chain_length"],
        _worker["charset"],
        _worker["modulus"],
        _worker["hash_fn"],
    )
    if result is not None:
        found.set()
    return result


def lookup_parallel(
    target_hash: str,
    table: Dict[str, str],
    config: RainbowConfig,
    modulus: int,
    num_cores: Optional[int] = None,
) -> Optional[str]:
    """
    Search all columns of the table concurrently.

    target_hash must already be a normalized digest (see rainbow.check_digest).
    Columns are handed out from the last to the first; the first
    replay-confirmed match is returned and the remaining workers are stopped.
    """
    if num_cores is None:
        num_cores = cpu_count()

    found = Event()
    tasks = [(position, target_hash) for position in range(config.chain_length - 1, -1, -1)]

    with Pool(
        num_cores,
        initializer=_init_lookup_worker,
        initargs=(table, config.charset, config.chain_length, modulus, config.hash_name, found),
    ) as pool:
        for result in pool.imap_unordered(_lookup_position_task, tasks):
            if result is not None:
                found.set()
                return result

    return None
