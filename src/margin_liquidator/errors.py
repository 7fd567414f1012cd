RESOURCE_EXHAUSTION_MARKERS = (
    'out of gas',
    'execution failed due to an exception',
    'gas required exceeds allowance',
)


class LiquidatorError(Exception):
    pass


class StaleRequest(LiquidatorError):
    '''
    Request was built from a block too far behind the chain head.
    '''


class TransientReadError(LiquidatorError):
    '''
    A ledger read failed. The caller falls back or retries next sweep.
    '''


class SchemaError(LiquidatorError):
    '''
    Position list payload does not match the expected record layout.
    '''


class LockUnavailable(LiquidatorError):
    pass


class SubmissionError(LiquidatorError):
    def __init__(self, message, cause=None):
        super().__init__(message)
        self.cause = cause


class ResourceExhaustion(SubmissionError):
    '''
    Ledger rejected the closure for running out of its execution budget.
    '''


class UnclassifiedSubmissionError(SubmissionError):
    pass


class ClosureReverted(LiquidatorError):
    def __init__(self, tx_hash, reason):
        super().__init__(f'Transaction {tx_hash} reverted: {reason}')
        self.tx_hash = tx_hash
        self.reason = reason


def is_resource_exhaustion(message):
    message = str(message).lower()
    return any(marker in message for marker in RESOURCE_EXHAUSTION_MARKERS)


def classify_submission_error(exc):
    if isinstance(exc, SubmissionError):
        return exc
    message = str(exc)
    if is_resource_exhaustion(message):
        return ResourceExhaustion(message, cause=exc)
    return UnclassifiedSubmissionError(message, cause=exc)
