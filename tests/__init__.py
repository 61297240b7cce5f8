# SPDX-License-Identifier: Apache-2.0
"""
Processly SDK Tests

This package contains the test suite for the SOP generation pipeline:
policies, validation, sanitization, provider adapters, the client and the CLI.
"""
