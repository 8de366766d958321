"""Errors that abort a channel reconciliation pass.

Every error raised by the reconciliation engine derives from ReconcileError,
so the operator can turn it into a failed pass result and report it verbatim.
"""


class ReconcileError(Exception):
    """Base error of a reconciliation pass"""

    def __init__(self, message, detail=None):
        Exception.__init__(self, message)
        self.message = message
        self.detail = detail


class CertificateParseError(ReconcileError):
    """A certificate is not well-formed PEM/X.509"""

    pass


class OrganizationResolutionError(ReconcileError):
    """An organization referenced by the channel could not be resolved"""

    pass


class DiffComputationError(ReconcileError):
    """The current channel configuration could not be interpreted"""

    pass


class InsufficientSignaturesError(ReconcileError):
    """A config update lacks a signature from a required organization"""

    def __init__(self, message, missing=None):
        ReconcileError.__init__(self, message, detail=missing)
        self.missing = list(missing) if missing else []


class JoinProtocolError(ReconcileError):
    """An ordering node admin endpoint refused to join the channel"""

    def __init__(self, message, url=None, status=None, body=None):
        ReconcileError.__init__(self, message, detail=body)
        self.url = url
        self.status = status
        self.body = body


class ConvergenceTimeoutError(ReconcileError):
    """The ordering service did not serve the channel config in time"""

    pass


class SubmissionRejectedError(ReconcileError):
    """The ordering service rejected a signed config update envelope"""

    pass


class BlockFetchError(ReconcileError):
    """The current channel config block could not be fetched"""

    pass


class ChannelParameterError(ReconcileError):
    """A channel parameter (duration, batch size, etcdraft option) is invalid"""

    pass
