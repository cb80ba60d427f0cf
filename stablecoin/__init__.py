"""
stablecoin - Over-collateralized Stablecoin Engine

A position/liquidation engine for a price-pegged synthetic asset: accounts
lock a backing asset, borrow synthetic tokens against it, and keepers
liquidate positions whose health factor drops below 1.0. Liquidations are
partial (restoring a target health factor) and bad debt is absorbed by a
fee-funded insurance fund.

Usage:
    from datetime import datetime
    from stablecoin import (
        Engine, PriceOracleAdapter, StaticPriceFeed, TokenLedger, TokenSpec,
    )

    book = TokenLedger("chain")
    weth = book.register_token(TokenSpec("WETH", "Wrapped Ether"))
    usdx = book.register_token(TokenSpec("USDX", "Synthetic Dollar", minter="engine"))
    feed = StaticPriceFeed(2000 * 10**8, datetime(2024, 1, 1))
    engine = Engine(weth, usdx, PriceOracleAdapter(feed), "governor",
                    initial_time=datetime(2024, 1, 1))

    # Fund and approve, then open a position
    weth.mint("faucet", "alice", 10 * 10**18)
    weth.approve("alice", "engine", 10 * 10**18)
    engine.deposit_collateral_and_mint("alice", 10 * 10**18, 5000 * 10**18)

    # Price crash, then liquidation by a keeper holding approved USDX
    feed.update_price(600 * 10**8, engine.current_time)
    plan = engine.liquidate("keeper", "alice")
"""

# Core types
from .core import (
    PRECISION,
    FEED_PRECISION,
    ADDITIONAL_FEED_PRECISION,
    LIQUIDATION_PRECISION,
    BPS_PRECISION,
    MIN_HEALTH_FACTOR,
    MAX_HEALTH_FACTOR,
    SYSTEM_WALLET,
    DEFAULT_ENGINE_ADDRESS,
    ORACLE_TIMEOUT,
    PARAMETER_COOLDOWN,
    ErrorCategory,
    ErrorKind,
    ExecuteResult,
    EventType,
    Position,
    PriceQuote,
    ParameterChange,
    EngineEvent,
    Operation,
    OperationResult,
    TokenCapability,
    PriceFeed,
    EngineView,
    StablecoinError,
    NeedsMoreThanZero,
    InvalidAddress,
    Unauthorized,
    InvalidParameter,
    ChangeExceedsMaximum,
    CooldownNotElapsed,
    InsufficientCollateral,
    InsufficientDebt,
    BreaksHealthFactor,
    HealthFactorOk,
    HealthFactorStillBroken,
    ReentrancyDetected,
    StalePrice,
    InvalidPrice,
    TransferFailed,
    MintFailed,
    BurnFailed,
    InsufficientInsuranceFunds,
    format_usd,
    format_health_factor,
)

# Token capability reference implementation
from .tokens import (
    TokenLedger,
    Token,
    TokenSpec,
    Transfer,
    TokenError,
    TokenNotRegistered,
    InsufficientBalance,
    InsufficientAllowance,
    NotMinter,
    ZeroAmount,
    ZeroAddress,
)

# Oracle
from .oracle import (
    PriceOracleAdapter,
    StaticPriceFeed,
    TimeSeriesPriceFeed,
)

# Parameters, insurance, positions
from .parameters import (
    ParameterSpec,
    ParameterSnapshot,
    ProtocolParameters,
    PARAMETER_SPECS,
    LIQUIDATION_THRESHOLD,
    LIQUIDATION_BONUS,
    TARGET_HEALTH_FACTOR,
    MINT_FEE,
    require_governance,
)
from .insurance import InsuranceFund
from .positions import PositionLedger

# Liquidation
from .liquidation import (
    LiquidationKind,
    LiquidationPlan,
    usd_value,
    token_amount_from_usd,
    calculate_health_factor,
    calculate_position_health_factor,
    calculate_debt_to_cover,
    calculate_collateral_to_redeem,
    calculate_shortfall,
    plan_liquidation,
)

# Engine
from .engine import Engine, OPERATION_NAMES


__all__ = [
    # Constants
    'PRECISION', 'FEED_PRECISION', 'ADDITIONAL_FEED_PRECISION', 'LIQUIDATION_PRECISION',
    'BPS_PRECISION', 'MIN_HEALTH_FACTOR', 'MAX_HEALTH_FACTOR', 'SYSTEM_WALLET',
    'DEFAULT_ENGINE_ADDRESS', 'ORACLE_TIMEOUT', 'PARAMETER_COOLDOWN',
    # Core
    'ErrorCategory', 'ErrorKind', 'ExecuteResult', 'EventType',
    'Position', 'PriceQuote', 'ParameterChange', 'EngineEvent', 'Operation', 'OperationResult',
    'TokenCapability', 'PriceFeed', 'EngineView',
    'format_usd', 'format_health_factor',
    # Exceptions
    'StablecoinError', 'NeedsMoreThanZero', 'InvalidAddress', 'Unauthorized',
    'InvalidParameter', 'ChangeExceedsMaximum', 'CooldownNotElapsed',
    'InsufficientCollateral', 'InsufficientDebt', 'BreaksHealthFactor', 'HealthFactorOk',
    'HealthFactorStillBroken', 'ReentrancyDetected', 'StalePrice', 'InvalidPrice',
    'TransferFailed', 'MintFailed', 'BurnFailed', 'InsufficientInsuranceFunds',
    # Tokens
    'TokenLedger', 'Token', 'TokenSpec', 'Transfer',
    'TokenError', 'TokenNotRegistered', 'InsufficientBalance', 'InsufficientAllowance',
    'NotMinter', 'ZeroAmount', 'ZeroAddress',
    # Oracle
    'PriceOracleAdapter', 'StaticPriceFeed', 'TimeSeriesPriceFeed',
    # Parameters, insurance, positions
    'ParameterSpec', 'ParameterSnapshot', 'ProtocolParameters', 'PARAMETER_SPECS',
    'LIQUIDATION_THRESHOLD', 'LIQUIDATION_BONUS', 'TARGET_HEALTH_FACTOR', 'MINT_FEE',
    'require_governance', 'InsuranceFund', 'PositionLedger',
    # Liquidation
    'LiquidationKind', 'LiquidationPlan', 'usd_value', 'token_amount_from_usd',
    'calculate_health_factor', 'calculate_position_health_factor', 'calculate_debt_to_cover',
    'calculate_collateral_to_redeem', 'calculate_shortfall', 'plan_liquidation',
    # Engine
    'Engine', 'OPERATION_NAMES',
]
