"""loaderflow - draft/approval/archive versioning for data loader definitions.

Every loader definition lives as at most one ACTIVE version and at most one
pending draft. Drafts are submitted for review, approved into production or
rejected, and every retired version is kept in an archive for audit and
rollback.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
