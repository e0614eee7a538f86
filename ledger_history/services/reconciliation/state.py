from collections.abc import Sequence

from ledger_history.models import AggregateState, VerificationResult, VerifiedEvent


def derive_state(events: Sequence[VerifiedEvent]) -> AggregateState:
    """
    Aggregate consistency state from verification results alone.

    All OK → Conforme, none OK → Inconsistente, otherwise Partial.
    An empty sequence is Partial.
    """
    if not events:
        return AggregateState.PARTIAL

    conforming = sum(
        1 for e in events if e.verification_result == VerificationResult.OK.value
    )

    if conforming == len(events):
        return AggregateState.CONFORME
    if conforming == 0:
        return AggregateState.INCONSISTENTE
    return AggregateState.PARTIAL
