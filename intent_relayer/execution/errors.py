from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterator

from web3 import Web3
from web3.exceptions import ContractLogicError, Web3Exception


class ErrorKind(str, Enum):
    REVERT = "revert"
    EXECUTION = "execution"
    OPAQUE = "opaque"


@dataclass(frozen=True)
class ErrorClassification:
    kind: ErrorKind
    name: str
    detail: str


def error_selectors(abi: list[dict]) -> dict[str, str]:
    """4-byte selector (hex, no prefix) -> custom error name."""
    out: dict[str, str] = {}
    for entry in abi or []:
        if entry.get("type") != "error":
            continue
        types = ",".join(i["type"] for i in entry.get("inputs", []))
        selector = bytes(Web3.keccak(text=f"{entry['name']}({types})")[:4]).hex()
        out[selector] = entry["name"]
    return out


def decode_custom_error(data, abi: list[dict]) -> str | None:
    if not isinstance(data, str):
        return None
    payload = data.lower().removeprefix("0x")
    return error_selectors(abi).get(payload[:8])


def _walk(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def classify_error(exc: BaseException, abi: list[dict] | None = None) -> ErrorClassification:
    """Sort a failed simulate/submit into revert, execution-layer or opaque."""
    detail = str(exc) or type(exc).__name__
    chain = list(_walk(exc))

    revert = next((e for e in chain if isinstance(e, ContractLogicError)), None)
    if revert is not None:
        name = decode_custom_error(getattr(revert, "data", None), abi or []) or getattr(revert, "message", None) or str(revert)
        return ErrorClassification(ErrorKind.REVERT, str(name), detail)

    execution = next((e for e in chain if isinstance(e, Web3Exception)), None)
    if execution is not None:
        return ErrorClassification(ErrorKind.EXECUTION, type(execution).__name__, detail)

    return ErrorClassification(ErrorKind.OPAQUE, type(exc).__name__, detail)
