class BatchQueueError(Exception):
    """Base batch queue exception."""

    pass


class FatalError(BatchQueueError):
    """Error that makes every further operation on the queue meaningless."""

    pass


class ConfigurationError(FatalError):
    """Required option or environment setting missing or malformed."""

    pass


class CredentialFormatError(FatalError):
    """Credentials file does not have the expected shape."""

    pass


class SpawnError(FatalError):
    """A synchronous control action could not start its subprocess."""

    pass
