# "tests" is a package so conftest and test modules can import tests.helpers;
# the project root goes on sys.path for runs started from another directory.
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
