"""
Test configuration for karyotype parser tests
"""

import pytest
import gc
import sys
from pathlib import Path

# Add the project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from parsing import KaryotypeParser, KaryotypeGrammar


@pytest.fixture(scope="session")
def shared_parser():
  """One parser for tests that only read results"""
  return KaryotypeParser()


@pytest.fixture(autouse=True)
def _collect_garbage():
  """Free each test's grammar before the next one is built (grammars form large reference cycles)"""
  yield
  gc.collect()
