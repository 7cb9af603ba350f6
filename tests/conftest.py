"""Pytest configuration: isolated settings and import path for the service package."""

import os
import sys
from pathlib import Path

# テストでは SQLite ファイルを作らず、設定ファイル不備でも落ちないようにする。
# 個別テストは monkeypatch で上書きできる。
os.environ.setdefault("PROGRESS_STORE", "memory")
os.environ.setdefault("STRICT_MODE", "false")

_SRC_ROOT = Path(__file__).resolve().parents[1] / "src"
if str(_SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(_SRC_ROOT))
