"""
RPM repository proxy.

Tracks upstream RPM releases, extracts their package metadata and serves
them as a dnf/yum repository.
"""

__version__ = "0.1.0"
