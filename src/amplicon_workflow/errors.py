# ==================================== EXCEPTIONS ==================================== #

class AmpliconWorkflowError(Exception):
    """Base class for errors raised by the amplicon workflow."""
    pass


class FormatError(AmpliconWorkflowError):
    """Raised when inputs disagree on identifiers or hold invalid values."""
    pass


class ParseError(AmpliconWorkflowError):
    """Raised when an input file cannot be parsed."""
    pass


class PreconditionError(AmpliconWorkflowError):
    """Raised when an operation is called on data it cannot handle correctly,
    e.g. a multifurcating tree passed to UniFrac or a zero-sum sample passed to
    relative-abundance normalization."""
    pass


class StatisticalFitError(AmpliconWorkflowError):
    """Raised when a statistical model fails to fit."""
    pass
