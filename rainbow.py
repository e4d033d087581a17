"""
Rainbow tables: time-memory trade-off inversion of a one-way hash function.

Instead of storing every (password, hash) pair, only the endpoints of
pseudo-random hash chains are kept. A preimage is recovered by replaying the
chain that the target hash would belong to.

Chain construction:
	p_0 --H--> h_0 --R_0--> p_1 --H--> h_1 --R_1--> ... --R_{N-1}--> p_N

where R_i is a position-dependent reduction folding a digest back into the
password space modulo a prime just above the number of passwords of length
1..L over the charset.

Uses the 'cryptography' library for the hash primitives.
"""

import random
import time
from typing import Callable, Dict, Iterator, Optional, Tuple

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes


HashFunction = Callable[[bytes], str]

DEFAULT_HASH = "sha1"

_HASH_ALGORITHMS: Dict[str, Callable[[], hashes.HashAlgorithm]] = {
	"md5": hashes.MD5,
	"sha1": hashes.SHA1,
	"sha224": hashes.SHA224,
	"sha256": hashes.SHA256,
	"sha384": hashes.SHA384,
	"sha512": hashes.SHA512,
	"sha3-256": hashes.SHA3_256,
	"sha3-512": hashes.SHA3_512,
	"blake2b": lambda: hashes.BLAKE2b(64),
	"blake2s": lambda: hashes.BLAKE2s(32),
}

# Miller-Rabin rounds: Pr[composite reported prime] <= 4^-64
_MR_ROUNDS = 64
_mr_random = random.Random()

_HEX_DIGITS = frozenset("0123456789abcdef")


def resolve_hash(name: str) -> Tuple[HashFunction, int]:
	"""
	Resolve a hash algorithm by name.

	Returns:
		(hash_fn, digest_length) where hash_fn maps bytes to a lowercase hex
		digest and digest_length is the number of hex characters it produces.

	Raises:
		UnsupportedAlgorithm: unknown name, or not available in the backend
	"""
	try:
		factory = _HASH_ALGORITHMS[name.lower()]
	except KeyError:
		raise UnsupportedAlgorithm(f"Unsupported hash algorithm: {name!r}") from None

	algorithm = factory()
	# Fail now rather than on the first chain
	hashes.Hash(algorithm)

	def h(data: bytes) -> str:
		hh = hashes.Hash(algorithm)
		hh.update(data)
		return hh.finalize().hex()

	return h, algorithm.digest_size * 2


def hash_password(password: str, hash_fn: HashFunction) -> str:
	return hash_fn(password.encode("utf-8"))


def _witness(a: int, n: int) -> bool:
	"""True if a proves n composite."""
	d, r = n - 1, 0
	while d % 2 == 0:
		d //= 2
		r += 1
	x = pow(a, d, n)
	if x == 1 or x == n - 1:
		return False
	for _ in range(r - 1):
		x = pow(x, 2, n)
		if x == n - 1:
			return False
	return True


def is_probable_prime(n: int, rounds: int = _MR_ROUNDS) -> bool:
	"""Miller-Rabin probabilistic primality test."""
	if n < 2:
		return False
	if n in (2, 3):
		return True
	if n % 2 == 0:
		return False
	for _ in range(rounds):
		a = _mr_random.randrange(2, n - 1)
		if _witness(a, n):
			return False
	return True


def next_prime(n: int) -> int:
	"""Smallest prime >= n."""
	if n <= 2:
		return 2
	if n % 2 == 0:
		n += 1
	while not is_probable_prime(n):
		n += 2
	return n


def prime_modulus(charset_size: int, password_length: int) -> int:
	"""
	Prime bound for the reduction function.

	Smallest prime >= sum(charset_size^i for i in 1..password_length), so every
	password of length <= password_length has its own residue.
	"""
	space = sum(charset_size ** i for i in range(1, password_length + 1))
	return next_prime(space)


class RainbowConfig:
	"""Immutable table parameters."""
	__slots__ = ("charset", "password_length", "chain_length", "num_chains", "hash_name")

	def __init__(
		self,
		charset: str,
		password_length: int,
		chain_length: int,
		num_chains: int,
		hash_name: str = DEFAULT_HASH,
	):
		if not charset:
			raise ValueError("charset must not be empty")
		if len(set(charset)) != len(charset):
			raise ValueError("charset symbols must be unique")
		for label, value in (
			("password_length", password_length),
			("chain_length", chain_length),
			("num_chains", num_chains),
		):
			if value < 1:
				raise ValueError(f"{label} must be >= 1, got {value}")

		object.__setattr__(self, "charset", charset)
		object.__setattr__(self, "password_length", password_length)
		object.__setattr__(self, "chain_length", chain_length)
		object.__setattr__(self, "num_chains", num_chains)
		object.__setattr__(self, "hash_name", hash_name.lower())

	def __setattr__(self, name, value):
		raise AttributeError(f"RainbowConfig is immutable (tried to set {name!r})")

	def password_space(self) -> int:
		"""Number of passwords of length 1..password_length over the charset."""
		base = len(self.charset)
		return sum(base ** i for i in range(1, self.password_length + 1))

	def __repr__(self) -> str:
		return (
			f"RainbowConfig(charset={self.charset!r}, password_length={self.password_length}, "
			f"chain_length={self.chain_length}, num_chains={self.num_chains}, "
			f"hash_name={self.hash_name!r})"
		)

	def __eq__(self, other) -> bool:
		if not isinstance(other, RainbowConfig):
			return NotImplemented
		return all(getattr(self, f) == getattr(other, f) for f in self.__slots__)

	def __hash__(self) -> int:
		return hash(tuple(getattr(self, f) for f in self.__slots__))


def reduce_hash(hash_hex: str, position: int, charset: str, modulus: int) -> str:
	"""
	Map a digest and a chain position to a password.

	The digest is read as a big integer, offset by the position so that every
	column of the table reduces differently, folded modulo the prime, and
	written out in base len(charset), least significant digit first.

	Output length is variable: a residue of 0 gives "" and no zero padding
	is applied.
	"""
	value = (int(hash_hex, 16) + position) % modulus
	base = len(charset)
	out = []
	while value > 0:
		value, digit = divmod(value, base)
		out.append(charset[digit])
	return "".join(out)


def iter_chain(
	start: str,
	chain_length: int,
	charset: str,
	modulus: int,
	hash_fn: HashFunction,
) -> Iterator[Tuple[int, str, str]]:
	"""Yield (position, H(password), R_position(H(password))) along a chain."""
	password = start
	for position in range(chain_length):
		h = hash_password(password, hash_fn)
		password = reduce_hash(h, position, charset, modulus)
		yield position, h, password


def generate_chain(
	start: str,
	chain_length: int,
	charset: str,
	modulus: int,
	hash_fn: HashFunction,
) -> str:
	"""Endpoint of the chain starting at start."""
	endpoint = start
	for _position, _h, endpoint in iter_chain(start, chain_length, charset, modulus, hash_fn):
		pass
	return endpoint


def random_password(length: int, charset: str, rng=None) -> str:
	"""Draw each position uniformly from the charset using rng.choice."""
	if rng is None:
		rng = random
	return "".join(rng.choice(charset) for _ in range(length))


def build_table(
	config: RainbowConfig,
	modulus: int,
	hash_fn: HashFunction,
	rng=None,
	verbose: bool = False,
) -> Tuple[Dict[str, str], Dict]:
	"""
	Generate random chains until config.num_chains distinct endpoints are held.

	A chain whose endpoint is already present is discarded (not merged) and
	counted as a collision. There is no bound on attempts: num_chains must
	stay well below the number of reachable endpoints.

	Args:
		config: Table parameters
		modulus: Prime bound for reductions
		hash_fn: Hash collaborator
		rng: Random source with a choice() method (default: random.Random())
		verbose: Print the build summary

	Returns:
		table: Dict endpoint -> start
		meta: Dict with 'attempts', 'collisions', 'elapsed' and 'method'
	"""
	if rng is None:
		rng = random.Random()

	table: Dict[str, str] = {}
	collisions = 0
	start_time = time.time()

	while len(table) < config.num_chains:
		start = random_password(config.password_length, config.charset, rng)
		end = generate_chain(start, config.chain_length, config.charset, modulus, hash_fn)
		if end not in table:
			table[end] = start
		else:
			collisions += 1

	elapsed = time.time() - start_time
	if verbose:
		print(f"chains: {config.num_chains} length: {config.chain_length} "
			f"generated in {elapsed:.3f}s ({collisions} collisions)")

	return table, {
		"chains": config.num_chains,
		"attempts": config.num_chains + collisions,
		"collisions": collisions,
		"elapsed": elapsed,
		"method": "serial",
	}


def check_digest(hash_hex: str, digest_length: int) -> str:
	"""Normalize a hex digest, rejecting anything the hash could not have produced."""
	if not isinstance(hash_hex, str):
		raise ValueError(f"digest must be a hex string, got {type(hash_hex).__name__}")
	digest = hash_hex.strip().lower()
	if len(digest) != digest_length:
		raise ValueError(f"digest must be {digest_length} hex characters, got {len(digest)}")
	if not all(c in _HEX_DIGITS for c in digest):
		raise ValueError(f"digest is not hexadecimal: {hash_hex!r}")
	return digest


def lookup_chain(
	start: str,
	target_hash: str,
	chain_length: int,
	charset: str,
	modulus: int,
	hash_fn: HashFunction,
) -> Optional[str]:
	"""
	Replay a stored chain from its start, returning the password that hashes to
	target_hash, or None if the chain never produces it (false alarm).
	"""
	password = start
	for _position, h, next_password in iter_chain(start, chain_length, charset, modulus, hash_fn):
		if h == target_hash:
			return password
		password = next_password
	return None


def lookup_position(
	position: int,
	target_hash: str,
	table: Dict[str, str],
	chain_length: int,
	charset: str,
	modulus: int,
	hash_fn: HashFunction,
) -> Optional[str]:
	"""
	Assume target_hash sits at column `position`, walk it to the end of the
	chain and, if that endpoint is stored, verify by replaying the chain.
	"""
	h = target_hash
	password = None
	for j in range(position, chain_length):
		password = reduce_hash(h, j, charset, modulus)
		h = hash_password(password, hash_fn)

	start = table.get(password)
	if start is None:
		return None
	return lookup_chain(start, target_hash, chain_length, charset, modulus, hash_fn)


def lookup(
	target_hash: str,
	table: Dict[str, str],
	chain_length: int,
	charset: str,
	modulus: int,
	hash_fn: HashFunction,
) -> Optional[str]:
	"""
	Search every column from the last to the first. The first replay-confirmed
	match wins. None does not prove the hash is outside the password space:
	merged chains leave some passwords uncovered.
	"""
	for position in range(chain_length - 1, -1, -1):
		found = lookup_position(position, target_hash, table, chain_length, charset, modulus, hash_fn)
		if found is not None:
			return found
	return None


class RainbowTable:
	"""
	A rainbow table bound to one configuration.

	Construct, call build() once, then lookup() any number of times. Tables can
	be persisted with save() and reloaded with RainbowTable.load().
	"""

	def __init__(
		self,
		charset: str,
		password_length: int,
		chain_length: int,
		num_chains: int,
		hash_name: str = DEFAULT_HASH,
		rng=None,
		modulus: Optional[int] = None,
	):
		self.config = RainbowConfig(charset, password_length, chain_length, num_chains, hash_name)
		self._hash, self.digest_length = resolve_hash(self.config.hash_name)
		if modulus is None:
			modulus = prime_modulus(len(charset), password_length)
		self.modulus = modulus
		self.rng = rng if rng is not None else random.Random()
		self.table: Dict[str, str] = {}
		self.meta: Dict = {}

	@classmethod
	def from_config(cls, config: RainbowConfig, modulus: int, table: Dict[str, str]) -> 'RainbowTable':
		"""Wrap an already-built table (e.g. one read back from disk)."""
		rt = cls(
			config.charset,
			config.password_length,
			config.chain_length,
			config.num_chains,
			config.hash_name,
			modulus=modulus,
		)
		rt.table = dict(table)
		rt.meta = {"chains": len(table), "method": "loaded"}
		return rt

	@property
	def built(self) -> bool:
		return bool(self.table)

	def __len__(self) -> int:
		return len(self.table)

	def __contains__(self, endpoint: str) -> bool:
		return endpoint in self.table

	def __repr__(self) -> str:
		return f"RainbowTable({self.config!r}, modulus={self.modulus}, chains={len(self.table)})"

	def hash(self, password: str) -> str:
		return hash_password(password, self._hash)

	def reduce(self, hash_hex: str, position: int) -> str:
		return reduce_hash(hash_hex, position, self.config.charset, self.modulus)

	def generate_chain(self, start: str) -> str:
		return generate_chain(start, self.config.chain_length, self.config.charset, self.modulus, self._hash)

	def chain_password(self, start: str, position: int) -> str:
		"""The password hashed at column `position` of the chain starting at start."""
		password = start
		for _step, _h, next_password in iter_chain(
			start, position, self.config.charset, self.modulus, self._hash
		):
			password = next_password
		return password

	def build(self, num_cores: int = 1, verbose: bool = False) -> Dict[str, str]:
		"""
		Populate the table. Serial when num_cores == 1, otherwise chains are
		generated on a process pool.

		Raises:
			RuntimeError: if the table was already built
		"""
		if self.built:
			raise RuntimeError("table already built")

		if verbose:
			print(f"prime modulus: {self.modulus}")

		if num_cores == 1:
			table, meta = build_table(self.config, self.modulus, self._hash, rng=self.rng, verbose=verbose)
		else:
			from rainbow_parallel import build_table_parallel
			table, meta = build_table_parallel(
				self.config, self.modulus, rng=self.rng, num_cores=num_cores, verbose=verbose
			)

		self.table = table
		self.meta = meta
		return table

	def lookup(self, hash_hex: str, num_cores: int = 1, verbose: bool = False) -> Optional[str]:
		"""
		Find a password hashing to hash_hex, or None.

		Raises:
			RuntimeError: if the table has not been built or loaded
			ValueError: if hash_hex is not a digest of the configured hash
		"""
		if not self.built:
			raise RuntimeError("table has not been built")
		target = check_digest(hash_hex, self.digest_length)

		start_time = time.time()
		if num_cores == 1:
			found = lookup(
				target, self.table, self.config.chain_length, self.config.charset, self.modulus, self._hash
			)
		else:
			from rainbow_parallel import lookup_parallel
			found = lookup_parallel(target, self.table, self.config, self.modulus, num_cores=num_cores)

		if verbose:
			if found is not None:
				print(f"matched hash: {target} ({found})")
			print(f"lookup took {time.time() - start_time:.3f}s")
		return found

	def save(self, path: str, verbose: bool = False) -> None:
		"""
		Persist configuration, modulus and chains.

		I/O errors propagate; the in-memory table stays usable.
		"""
		from rainbow_store import save_table

		start_time = time.time()
		save_table(path, self.config, self.modulus, self.table)
		if verbose:
			print(f"serialized in {time.time() - start_time:.3f}s")

	@classmethod
	def load(cls, path: str) -> 'RainbowTable':
		from rainbow_store import load_table

		config, modulus, table = load_table(path)
		return cls.from_config(config, modulus, table)


DEMO_CHARSET = "0123456789abcdefghijklmnopqrstuvwxyz"


def demo_rainbow(
	password_length: int = 4,
	chain_length: int = 200,
	num_chains: int = 5000,
	num_cores: int = 1,
	path: str = "table.dat",
):
	"""
	Build a table over 0-9a-z, save it, and look up a few hashes.

	Args:
		password_length: Length of the start passwords
		chain_length: Reductions per chain
		num_chains: Distinct endpoints to collect
		num_cores: Number of CPU cores (1 = serial, >1 = parallel)
		path: Where to write the table
	"""
	print("=" * 70)
	print(f"Rainbow table: L={password_length}, N={chain_length}, M={num_chains}, cores={num_cores}")
	print("=" * 70)

	rt = RainbowTable(DEMO_CHARSET, password_length, chain_length, num_chains, rng=random.Random(424242))
	rt.build(num_cores=num_cores, verbose=True)
	print(f"  Attempts: {rt.meta['attempts']}")
	print(f"  Collisions: {rt.meta['collisions']}")

	try:
		rt.save(path, verbose=True)
	except OSError as e:
		print(f"  ✗ Could not save table to {path}: {e}")

	# A password known to lie on a stored chain
	start = next(iter(rt.table.values()))
	inner = rt.chain_password(start, chain_length // 2)
	targets = [rt.hash("a"), rt.hash(inner)]

	for target in targets:
		found = rt.lookup(target, num_cores=num_cores, verbose=True)
		print(f"lookup: {found}")
	print()
	return rt


if __name__ == "__main__":
	import sys

	if len(sys.argv) > 1 and sys.argv[1] == "lookup":
		if len(sys.argv) < 4:
			print("Usage: python rainbow.py lookup <table_path> <hash_hex> [num_cores]")
			sys.exit(1)
		num_cores = int(sys.argv[4]) if len(sys.argv) > 4 else 1
		rt = RainbowTable.load(sys.argv[2])
		print(f"Loaded {rt!r}")
		found = rt.lookup(sys.argv[3], num_cores=num_cores, verbose=True)
		print(f"lookup: {found}")
	else:
		password_length = int(sys.argv[1]) if len(sys.argv) > 1 else 4
		chain_length = int(sys.argv[2]) if len(sys.argv) > 2 else 200
		num_chains = int(sys.argv[3]) if len(sys.argv) > 3 else 5000
		num_cores = int(sys.argv[4]) if len(sys.argv) > 4 else 1

		demo_rainbow(
			password_length=password_length,
			chain_length=chain_length,
			num_chains=num_chains,
			num_cores=num_cores,
		)
