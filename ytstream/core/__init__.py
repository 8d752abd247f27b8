from .errors import (
    FormatNotFoundError,
    InvalidVideoIdError,
    PlayabilityError,
    ProtocolError,
    RequestError,
    ResolutionError,
    ScriptExecutionError,
    YtStreamError,
)

__all__ = [
    "FormatNotFoundError",
    "InvalidVideoIdError",
    "PlayabilityError",
    "ProtocolError",
    "RequestError",
    "ResolutionError",
    "ScriptExecutionError",
    "YtStreamError",
]
