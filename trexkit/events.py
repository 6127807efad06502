"""
Receipt log decoding.

Factory-driven deployments create contracts the caller never asked for by
address; the only place those addresses surface is the event the factory emits.
An EventSchema knows one event's topic0 and parameter layout and decodes
matching logs; logs that don't match decode to None and are skipped.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import keccak, to_checksum_address

from trexkit.errors import EventDecodeError, EventNotFound
from trexkit.ledger import LogRecord, Receipt
from trexkit.models import SuiteAddressSet
from trexkit.observability import SuiteLayer, get_logger
from trexkit.validation import is_valid_address, is_zero_address

logger = get_logger("events", SuiteLayer.EVENTS)

_PARAM_RE = re.compile(r"^\s*(?P<type>[\w\[\]]+)(?P<indexed>\s+indexed)?(?:\s+(?P<name>\w+))?\s*$")


@dataclass(frozen=True)
class EventParam:
    name: str
    type: str
    indexed: bool = False

    @property
    def is_dynamic(self) -> bool:
        # indexed dynamic values only appear in topics as their keccak hash
        return self.type in ("string", "bytes") or self.type.endswith("]") or self.type.startswith("(")


@dataclass(frozen=True)
class DecodedEvent:
    name: str
    args: Dict[str, Any]
    values: Tuple[Any, ...]
    address: str = ""
    log_index: int = 0


class EventSchema:
    """One event's signature, topic0 and parameter layout."""

    def __init__(self, name: str, params: Sequence[EventParam]):
        self.name = name
        self.params = list(params)
        self.signature = f"{name}({','.join(p.type for p in self.params)})"
        self.topic0 = keccak(text=self.signature)

    @classmethod
    def from_signature(cls, declaration: str) -> "EventSchema":
        """
        Parse a Solidity-style declaration, e.g.
        ``Transfer(address indexed from, address indexed to, uint256 value)``.
        """
        match = re.match(r"^\s*(\w+)\s*\((.*)\)\s*$", declaration)
        if not match:
            raise ValueError(f"not an event declaration: {declaration!r}")
        name, body = match.groups()
        params = []
        for position, chunk in enumerate(filter(None, (c.strip() for c in body.split(",")))):
            parsed = _PARAM_RE.match(chunk)
            if not parsed:
                raise ValueError(f"bad event parameter {chunk!r} in {declaration!r}")
            params.append(EventParam(
                name=parsed.group("name") or f"arg{position}",
                type=parsed.group("type"),
                indexed=bool(parsed.group("indexed")),
            ))
        return cls(name, params)

    @classmethod
    def from_abi(cls, abi: Sequence[Mapping[str, Any]], name: str) -> "EventSchema":
        for entry in abi:
            if entry.get("type") == "event" and entry.get("name") == name:
                return cls(name, [
                    EventParam(i.get("name") or f"arg{n}", i["type"], bool(i.get("indexed")))
                    for n, i in enumerate(entry.get("inputs", []))
                ])
        raise ValueError(f"event {name} not present in ABI")

    @property
    def indexed(self) -> List[EventParam]:
        return [p for p in self.params if p.indexed]

    @property
    def non_indexed(self) -> List[EventParam]:
        return [p for p in self.params if not p.indexed]

    def try_decode(self, log: LogRecord) -> Optional[DecodedEvent]:
        """Decode the log if it is an instance of this event, else None."""
        topics = [bytes(t) for t in log.topics]
        if not topics or topics[0] != self.topic0:
            return None
        if len(topics) != 1 + len(self.indexed):
            return None

        try:
            data_values = iter(decode([p.type for p in self.non_indexed], bytes(log.data)))
            topic_values = iter(topics[1:])
            values = []
            for param in self.params:
                if not param.indexed:
                    values.append(next(data_values))
                elif param.is_dynamic:
                    values.append(next(topic_values))
                else:
                    values.append(decode([param.type], next(topic_values))[0])
        except (DecodingError, ValueError, OverflowError):
            return None

        return DecodedEvent(
            name=self.name,
            args={p.name: v for p, v in zip(self.params, values)},
            values=tuple(values),
            address=log.address,
            log_index=log.log_index,
        )

    def encode_log(self, address: str, values: Mapping[str, Any], log_index: int = 0) -> LogRecord:
        """Build a log for this event."""
        topics = [self.topic0]
        for param in self.indexed:
            value = values[param.name]
            if param.is_dynamic:
                raw = value.encode("utf-8") if isinstance(value, str) else bytes(value)
                topics.append(keccak(raw))
            else:
                topics.append(encode([param.type], [value]))
        data = encode(
            [p.type for p in self.non_indexed],
            [values[p.name] for p in self.non_indexed],
        )
        return LogRecord(address=address, topics=topics, data=data, log_index=log_index)


def find_event(receipt: Receipt, schema: EventSchema) -> DecodedEvent:
    """First log in the receipt that decodes as ``schema``."""
    for log in receipt.logs:
        decoded = schema.try_decode(log)
        if decoded is not None:
            return decoded
    raise EventNotFound(
        f"no {schema.name} event in receipt {receipt.tx_hash} ({len(receipt.logs)} logs scanned)"
    )


TREX_SUITE_DEPLOYED = EventSchema.from_signature(
    "TREXSuiteDeployed(address indexed _token, address _ir, address _irs, "
    "address _tir, address _ctr, address _mc, string indexed _salt)"
)

# SuiteAddressSet field -> (event parameter name, position)
FieldMap = Mapping[str, Tuple[str, int]]

TREX_SUITE_FIELD_MAP: Dict[str, Tuple[str, int]] = {
    "token": ("_token", 0),
    "identity_registry": ("_ir", 1),
    "identity_registry_storage": ("_irs", 2),
    "trusted_issuers_registry": ("_tir", 3),
    "claim_topics_registry": ("_ctr", 4),
    "compliance": ("_mc", 5),
}


def _field_value(event: DecodedEvent, field: str, source: Tuple[str, int]) -> str:
    name, position = source
    if name in event.args:
        raw: Union[str, bytes, None] = event.args[name]
    elif 0 <= position < len(event.values):
        raw = event.values[position]
    else:
        raise EventDecodeError(f"{event.name} has no field {name!r} (position {position}) for {field}")

    if isinstance(raw, bytes) and len(raw) == 20:
        raw = "0x" + raw.hex()
    if not isinstance(raw, str) or not is_valid_address(raw):
        raise EventDecodeError(f"{event.name}.{name} is not an address: {raw!r}")
    if is_zero_address(raw):
        raise EventDecodeError(f"{event.name}.{name} is the zero address")
    return to_checksum_address(raw)


def extract_suite_addresses(
    receipt: Receipt,
    schema: EventSchema = TREX_SUITE_DEPLOYED,
    field_map: Optional[FieldMap] = None,
) -> SuiteAddressSet:
    """Recover the suite addresses from a factory deployment receipt."""
    event = find_event(receipt, schema)
    mapping = field_map or TREX_SUITE_FIELD_MAP
    addresses = {f: _field_value(event, f, source) for f, source in mapping.items()}
    logger.info(
        "Decoded suite addresses from event",
        event=schema.name,
        tx_hash=receipt.tx_hash,
        log_index=event.log_index,
        token=addresses.get("token"),
    )
    return SuiteAddressSet(**addresses)
