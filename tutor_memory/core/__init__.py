# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Core package.

- config: Application configuration and settings
- intelligence: Embedding and LLM collaborators
- memory: Tiered conversational memory
"""
