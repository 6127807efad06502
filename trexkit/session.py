"""
Deployment session: the submit-then-await loop every flow runs through.

Each deployment or state-changing call is one step. A step is submitted,
awaited to confirmation, journaled, and traced as a span. Steps never overlap;
a failure aborts the run with StepFailed naming the failing step and the last
one that confirmed. Nothing is rolled back: confirmed steps stay on the ledger.

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Sequence

from trexkit.errors import LedgerError, StepFailed, TransactionReverted
from trexkit.ledger import LedgerAdapter, PendingTransaction, Receipt, Signer
from trexkit.observability import Span, SuiteLayer, Tracer, get_logger, get_tracer

logger = get_logger("session", SuiteLayer.SESSION)

DEFAULT_CONFIRMATION_TIMEOUT = 120.0


@dataclass(frozen=True)
class StepRecord:
    """Journal entry for a confirmed step."""
    name: str
    tx_hash: str
    block_number: int
    gas_used: int
    address: Optional[str] = None


class DeploymentSession:
    """Sequential executor over a LedgerAdapter."""

    def __init__(
        self,
        ledger: LedgerAdapter,
        timeout: float = DEFAULT_CONFIRMATION_TIMEOUT,
        tracer: Optional[Tracer] = None,
    ):
        self.ledger = ledger
        self.timeout = timeout
        self.tracer = tracer or get_tracer()
        self.journal: List[StepRecord] = []
        self.addresses: Dict[str, str] = {}

    @property
    def completed_steps(self) -> List[str]:
        return [record.name for record in self.journal]

    @property
    def last_completed_step(self) -> Optional[str]:
        return self.journal[-1].name if self.journal else None

    @contextmanager
    def step(self, name: str, **attributes: Any) -> Iterator[Span]:
        """Run one step; ledger failures surface as StepFailed."""
        with self.tracer.span(name, SuiteLayer.SESSION, **attributes) as span:
            try:
                yield span
            except StepFailed:
                raise
            except LedgerError as e:
                logger.error(
                    "Deployment step failed",
                    step=name,
                    last_completed=self.last_completed_step,
                    error=str(e),
                )
                raise StepFailed(name, self.last_completed_step, e) from e

    def _await(self, pending: PendingTransaction, span: Span) -> Receipt:
        span.set_attribute("tx_hash", pending.tx_hash)
        span.record_event("submitted", tx_hash=pending.tx_hash)
        receipt = self.ledger.confirm(pending, self.timeout)
        span.record_event("mined", status=receipt.status)
        span.set_attribute("block_number", receipt.block_number)
        span.set_attribute("gas_used", receipt.gas_used)
        if not receipt.succeeded:
            raise TransactionReverted(pending.description, pending.tx_hash, receipt.revert_reason)
        return receipt

    def deploy(
        self,
        contract: str,
        args: Sequence[Any],
        signer: Signer,
        label: Optional[str] = None,
    ) -> str:
        """Deploy a contract and return its address once confirmed."""
        name = f"deploy {label or contract}"
        with self.step(name, contract=contract, sender=signer.address) as span:
            pending = self.ledger.deploy(contract, list(args), signer)
            receipt = self._await(pending, span)
            if not receipt.contract_address:
                raise TransactionReverted(
                    pending.description, pending.tx_hash, "receipt carries no contract address"
                )
            span.set_attribute("address", receipt.contract_address)

        self.journal.append(StepRecord(
            name=name,
            tx_hash=receipt.tx_hash,
            block_number=receipt.block_number,
            gas_used=receipt.gas_used,
            address=receipt.contract_address,
        ))
        self.addresses[label or contract] = receipt.contract_address
        logger.info(
            "Contract deployed",
            contract=contract,
            label=label or contract,
            address=receipt.contract_address,
            tx_hash=receipt.tx_hash,
        )
        return receipt.contract_address

    def transact(
        self,
        address: str,
        contract: str,
        function: str,
        args: Sequence[Any],
        signer: Signer,
        step: Optional[str] = None,
    ) -> Receipt:
        """Submit a state-changing call and return its confirmed receipt."""
        name = step or f"{contract}.{function}"
        with self.step(name, contract=contract, function=function, sender=signer.address) as span:
            pending = self.ledger.submit(address, contract, function, list(args), signer)
            receipt = self._await(pending, span)

        self.journal.append(StepRecord(
            name=name,
            tx_hash=receipt.tx_hash,
            block_number=receipt.block_number,
            gas_used=receipt.gas_used,
        ))
        logger.debug("Transaction confirmed", step=name, tx_hash=receipt.tx_hash)
        return receipt

    def query(self, address: str, contract: str, function: str, args: Sequence[Any] = ()) -> Any:
        """Read-only query; not journaled. LedgerCallError propagates unchanged."""
        return self.ledger.call(address, contract, function, list(args))

    def has_code(self, address: str) -> bool:
        return len(self.ledger.get_code(address)) > 0
