"""
devfiles: fetch and verify the headers, build metadata and import libraries
needed to compile native extension modules against a runtime version.

Import directly from sub-modules:
    from devfiles.install import install
    from devfiles.release import resolve_release
    from devfiles.config import InstallOptions
"""

__version__ = "1.0.0"
