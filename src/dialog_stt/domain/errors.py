class DialogSttError(Exception):
    pass


class ConfigurationError(DialogSttError):
    pass


class SessionInitializationError(DialogSttError):
    pass


class SessionNotActiveError(DialogSttError):
    pass
