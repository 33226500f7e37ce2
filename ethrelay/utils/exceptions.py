"""
Exception hierarchy for the Ethereum relay
"""


class EthRelayError(Exception):

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class RPCError(EthRelayError):
    """JSON-RPC level error returned by the node"""

    def __init__(self, message: str, code: int = None, method: str = None):
        self.code = code
        self.method = method
        super().__init__(message)


class BlockNotFoundError(EthRelayError):
    """The node knows the height or hash but returned no block body yet"""

    def __init__(self, identifier):
        self.identifier = identifier
        super().__init__(f"block info is empty {identifier}")


class RetryTimeoutError(EthRelayError):
    """A bounded retry policy or wait deadline was exhausted"""

    def __init__(self, message: str, attempts: int = None):
        self.attempts = attempts
        super().__init__(message)


class ForkResolutionError(EthRelayError):
    """Common ancestor of a fork could not be located; persisted history needs an operator"""

    pass


class ScannerUsageError(EthRelayError):
    pass


class ScannerAlreadyRunningError(ScannerUsageError):
    pass


class CredentialError(EthRelayError):
    pass


class TransferError(EthRelayError):
    pass
