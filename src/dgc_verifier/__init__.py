"""
dgc_verifier — offline digital health certificate verification.

Keeps the revocation list (DRL) synchronized in resumable, versioned chunks
and evaluates decoded certificates against a scan-mode/type/country rule
matrix driven by remotely supplied settings.

Built on a Railway-Oriented Result type for explicit error handling at
every adapter boundary.
"""

__version__ = "0.1.0"
