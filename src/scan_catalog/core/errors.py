#!/usr/bin/env python3
"""
Error taxonomy for the catalog conversion pipeline.

Every error here is fatal for the run: it propagates to the pipeline
entry point, which logs it and exits non-zero without writing output.
Updates without a KB article are not errors (see UpdateOutcome.skipped).
"""


class CatalogToolError(Exception):
    """Base class for all fatal pipeline errors"""
    pass


class CatalogFetchError(CatalogToolError):
    """Raised when the catalog cabinet cannot be downloaded or saved"""
    pass


class ExpansionError(CatalogToolError):
    """Raised when archive expansion fails or its marker file is missing"""
    pass


class DescriptorError(CatalogToolError):
    """Base class for failures tied to one descriptor file"""

    def __init__(self, message: str, kind=None, descriptor_name: str = None):
        super().__init__(message)
        self.kind = kind
        self.descriptor_name = descriptor_name


class DescriptorParseError(DescriptorError):
    """Raised when a descriptor is malformed or lacks a required field"""
    pass


class DescriptorReadError(DescriptorError):
    """Raised when a descriptor file of an eligible update cannot be read"""
    pass


class ResultWriteError(CatalogToolError):
    """Raised when the output document cannot be written"""
    pass


class RunAborted(CatalogToolError):
    """Raised when an external abort was requested before output"""
    pass
