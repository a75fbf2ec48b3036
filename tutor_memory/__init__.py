"""Tutor Memory.

Multi-tiered conversational memory for AI tutoring: short-term, working and
long-term memory, consolidation, decay and token-budgeted context assembly.

Copyright (C) 2025 Global Digital Labs (gdlabs.io)
SPDX-License-Identifier: LGPL-3.0-or-later
"""

__version__ = "1.0.0"
