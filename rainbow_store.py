"""
On-disk format for rainbow tables.

Little-endian layout:
	header  : magic b"RBWTBL01", version, password_length, chain_length, num_chains
	fields  : charset (UTF-8), hash name (ASCII), modulus (big-endian unsigned),
	          each prefixed with a u32 byte length
	count   : u64 number of chains
	records : endpoint, start (UTF-8, u32 length-prefixed) per chain

Everything needed for lookups is in the file, so the modulus is never
recomputed on load.
"""

import os
import struct
from typing import BinaryIO, Dict, Tuple

from rainbow import RainbowConfig, is_probable_prime


MAGIC = b"RBWTBL01"
VERSION = 1

_HEADER = struct.Struct("<8sIIIQ")
_LEN = struct.Struct("<I")
_COUNT = struct.Struct("<Q")


def _pack_bytes(data: bytes) -> bytes:
	return _LEN.pack(len(data)) + data


def _pack_str(s: str) -> bytes:
	return _pack_bytes(s.encode("utf-8"))


def _modulus_to_bytes(modulus: int) -> bytes:
	return modulus.to_bytes((modulus.bit_length() + 7) // 8 or 1, "big")


def _read_exact(f: BinaryIO, n: int) -> bytes:
	data = f.read(n)
	if len(data) != n:
		raise ValueError(f"truncated table file: wanted {n} bytes, got {len(data)}")
	return data


def _read_bytes(f: BinaryIO) -> bytes:
	(length,) = _LEN.unpack(_read_exact(f, _LEN.size))
	return _read_exact(f, length)


def _read_str(f: BinaryIO) -> str:
	try:
		return _read_bytes(f).decode("utf-8")
	except UnicodeDecodeError as e:
		raise ValueError(f"corrupt string in table file: {e}") from None


def save_table(path: str, config: RainbowConfig, modulus: int, table: Dict[str, str]) -> None:
	"""
	Write a table to path.

	Raises:
		OSError: if the file cannot be written
		ValueError: if the parameters do not fit the header fields
	"""
	try:
		header = _HEADER.pack(
			MAGIC,
			VERSION,
			config.password_length,
			config.chain_length,
			config.num_chains,
		)
	except struct.error as e:
		raise ValueError(f"table parameters do not fit the file header: {e}") from None
	header += _pack_str(config.charset)
	header += _pack_bytes(config.hash_name.encode("ascii"))
	header += _pack_bytes(_modulus_to_bytes(modulus))
	header += _COUNT.pack(len(table))

	# Written beside the target and swapped in, so a failed save never clobbers
	# an existing table
	tmp_path = path + ".tmp"
	try:
		with open(tmp_path, "wb") as f:
			f.write(header)
			for endpoint, start in table.items():
				f.write(_pack_str(endpoint))
				f.write(_pack_str(start))
		os.replace(tmp_path, path)
	except BaseException:
		if os.path.exists(tmp_path):
			os.remove(tmp_path)
		raise


def load_table(path: str) -> Tuple[RainbowConfig, int, Dict[str, str]]:
	"""
	Read a table written by save_table.

	Returns:
		(config, modulus, table)

	Raises:
		OSError: if the file cannot be read
		ValueError: if the file is not a valid table
	"""
	with open(path, "rb") as f:
		magic, version, password_length, chain_length, num_chains = _HEADER.unpack(
			_read_exact(f, _HEADER.size)
		)
		if magic != MAGIC:
			raise ValueError(f"not a rainbow table file (magic {magic!r})")
		if version != VERSION:
			raise ValueError(f"unsupported table version {version}")

		charset = _read_str(f)
		hash_name = _read_bytes(f).decode("ascii", errors="replace")
		modulus = int.from_bytes(_read_bytes(f), "big")

		config = RainbowConfig(charset, password_length, chain_length, num_chains, hash_name)
		if modulus < config.password_space():
			raise ValueError(f"modulus {modulus} is smaller than the password space")
		if not is_probable_prime(modulus):
			raise ValueError(f"modulus {modulus} is not prime")

		(count,) = _COUNT.unpack(_read_exact(f, _COUNT.size))
		if count != num_chains:
			raise ValueError(f"table holds {count} chains, header says {num_chains}")

		table: Dict[str, str] = {}
		for _ in range(count):
			endpoint = _read_str(f)
			start = _read_str(f)
			if endpoint in table:
				raise ValueError(f"duplicate endpoint {endpoint!r} in table file")
			table[endpoint] = start

		if f.read(1):
			raise ValueError("trailing data after last chain")

	return config, modulus, table
