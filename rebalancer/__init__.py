from .errors import (
    RebalancerError,
    InvalidInput,
    ArithmeticOverflow,
    DivisionByZero,
    TickOutOfRange,
    CollaboratorCallFailed,
    Unauthorized,
    ConfigError,
)
from .collaborators import CallResult, MintParams, MintResult, PositionInfo
from .lifecycle import PositionLifecycle, PositionRecord, PositionState, TokenContext, RebalanceResult, CloseResult
from .rebalancer import Rebalancer
