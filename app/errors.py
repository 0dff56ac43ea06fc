"""Error taxonomy shared by the registry, the upload pipeline and the HTTP layer.

Client errors carry a reason that is safe to show to the caller. Server errors
keep their detail for the logs; the HTTP layer only ever reports them
generically.
"""


class RegistryError(Exception):
    status_code = 500

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ClientError(RegistryError):
    status_code = 400


class ExtensionNotAllowed(ClientError):
    pass


class FileTooLarge(ClientError):
    status_code = 413


class InvalidLink(ClientError):
    pass


class EmptySubmission(ClientError):
    pass


class MissingCredentials(ClientError):
    pass


class NotFoundError(RegistryError):
    status_code = 404


class ServerError(RegistryError):
    status_code = 500


class StorageError(ServerError):
    pass


class CodeSpaceExhausted(ServerError):
    pass
