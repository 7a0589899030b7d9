from .erc20 import ERC20Ledger
from .position_manager import SlipstreamPositionManager
from .gauge import CLGauge
from .pool import SlipstreamPool
