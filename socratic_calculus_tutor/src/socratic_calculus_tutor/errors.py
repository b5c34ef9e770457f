"""
Error taxonomy for the tutoring core.

Every failure is caught at the turn boundary (SocraticTutor.submit) or inside
the sandbox / store; none of these escape into the animation loop.
"""


class TutorError(Exception):
    """Base class for tutoring errors."""


class InputRejected(TutorError):
    """Empty submission or submission while a request is in flight."""


class OracleError(TutorError):
    """The oracle turn could not be completed."""


class OracleTransportError(OracleError):
    """Network or HTTP failure talking to the oracle."""


class OracleContractViolation(OracleError):
    """The oracle answered, but the structured record is unusable."""


class SandboxRejected(TutorError):
    """An expression failed the allow-list or the probe."""


class PersistenceFailure(TutorError):
    """Reading or writing the stored knowledge graph failed."""
