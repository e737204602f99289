# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from .code_assist_client import CodeAssistClient

__all__ = ["CodeAssistClient"]
