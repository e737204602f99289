# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/gemini_auth/utils/resilient_io.py

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Union


def safe_write_json(
    path: Union[str, Path],
    data: Dict[str, Any],
    logger: logging.Logger,
    indent: int = 2,
    secure_permissions: bool = False,
) -> bool:
    """
    Atomically write JSON data to a file.

    The content goes to a temp file in the target directory, is flushed and
    fsynced, then renamed over the target, so readers of the path see either
    the old file or the new one in full.

    Args:
        path: File path to write to
        data: JSON-serializable data
        logger: Logger for warnings
        indent: JSON indentation level (default: 2)
        secure_permissions: Set file permissions to 0o600 (default: False)

    Returns:
        True on success, False on failure (never raises)
    """
    path = Path(path)

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        content = json.dumps(data, indent=indent)

        tmp_fd = None
        tmp_path = None
        try:
            tmp_fd, tmp_path = tempfile.mkstemp(
                dir=path.parent, prefix=".tmp_", suffix=".json", text=True
            )
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as f:
                tmp_fd = None
                f.write(content)
                f.flush()
                os.fsync(f.fileno())

            # Permissions go on before the rename so the secret is never world-readable
            if secure_permissions:
                try:
                    os.chmod(tmp_path, 0o600)
                except (OSError, AttributeError):
                    # Windows may not support chmod
                    pass

            os.replace(tmp_path, path)
            tmp_path = None
        finally:
            if tmp_fd is not None:
                try:
                    os.close(tmp_fd)
                except OSError:
                    pass
            if tmp_path and os.path.exists(tmp_path):
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass

        return True

    except (OSError, TypeError, ValueError) as e:
        logger.warning(f"Failed to write JSON to {path}: {e}")
        return False
