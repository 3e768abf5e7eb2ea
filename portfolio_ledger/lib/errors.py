"""Custom exception classes for portfolio-ledger."""


class PortfolioLedgerError(Exception):
    """Base exception for all portfolio-ledger errors."""

    def __init__(self, message: str):
        """Initialize with error message."""
        self.message = message
        super().__init__(message)


class DataError(PortfolioLedgerError):
    """Ledger data validation or processing errors."""

    pass


class InvalidLedgerRowError(DataError):
    """A malformed transaction row reached the engine."""

    def __init__(self, row_id: object, reason: str):
        """
        Initialize with row details.

        Args:
            row_id: Identifier of the offending row (may be None before insert)
            reason: What is wrong with the row
        """
        self.row_id = row_id
        self.reason = reason
        super().__init__(f"Invalid ledger row {row_id!r}: {reason}")


class OverdraftPositionError(DataError):
    """A disposal removes more units than the position holds."""

    def __init__(self, account_id: str, symbol: str, held: object, requested: object):
        """
        Initialize with quantity details.

        Args:
            account_id: Account holding the position
            symbol: Position symbol
            held: Quantity held before the disposal
            requested: Quantity the disposal removes
        """
        self.account_id = account_id
        self.symbol = symbol
        super().__init__(
            f"Cannot dispose of {requested} units of {symbol} in account {account_id}. "
            f"Only {held} units held."
        )


class InvalidPeriodError(DataError):
    """Unknown equity curve period token."""

    def __init__(self, period: str, valid: tuple[str, ...]):
        """
        Initialize with the rejected token.

        Args:
            period: The token that was requested
            valid: Accepted tokens
        """
        super().__init__(f"Invalid period: '{period}'. Expected one of: {', '.join(valid)}")


class MarketDataError(PortfolioLedgerError):
    """Market data provider errors."""

    pass


class RateLimitedError(MarketDataError):
    """Provider signalled a rate limit."""

    def __init__(self, provider: str, subject: str):
        """
        Initialize rate limit error.

        Args:
            provider: Name of the provider that throttled us
            subject: Symbol or pair being fetched
        """
        self.provider = provider
        self.subject = subject
        super().__init__(f"{provider} rate limit hit while fetching {subject}")


class MarketDataUnavailableError(MarketDataError):
    """Quote or FX rate could not be fetched."""

    def __init__(self, subject: str, details: str = ""):
        """
        Initialize with fetch details.

        Args:
            subject: Symbol or pair being fetched
            details: Additional error details
        """
        self.subject = subject
        message = f"Market data unavailable for {subject}"
        if details:
            message += f": {details}"
        super().__init__(message)


class DatabaseError(PortfolioLedgerError):
    """Database operation errors."""

    pass


class ConfigurationError(PortfolioLedgerError):
    """Configuration errors."""

    pass


# Error message helpers


def format_error_message(error: Exception) -> str:
    """
    Format exception into user-friendly error message.

    Args:
        error: The exception to format

    Returns:
        Formatted error message
    """
    if isinstance(error, PortfolioLedgerError):
        return error.message

    error_type = type(error).__name__
    return f"{error_type}: {str(error)}"


def get_error_color(error: Exception) -> str:
    """
    Get Rich color for error type.

    Args:
        error: The exception

    Returns:
        Rich color name
    """
    if isinstance(error, RateLimitedError):
        return "yellow"
    elif isinstance(error, DataError):
        return "red"
    elif isinstance(error, ConfigurationError):
        return "orange"
    elif isinstance(error, DatabaseError):
        return "magenta"
    else:
        return "red"
