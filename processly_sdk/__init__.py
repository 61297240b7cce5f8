# processly_sdk/__init__.py
# SPDX-License-Identifier: Apache-2.0
"""Processly SDK: structured SOP generation from free-form notes."""

__version__ = "0.1.0"
