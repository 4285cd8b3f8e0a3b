import sys
from pathlib import Path
from unittest.mock import Mock

import pytest
import requests

# Add project root so `import core`, `import wallets` work in tests
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_response(status_code: int = 200, payload=None, reason: str = "OK"):
    r = Mock()
    r.status_code = status_code
    r.ok = 200 <= status_code < 400
    r.reason = reason
    r.json.return_value = payload
    if not r.ok:
        r.raise_for_status.side_effect = requests.HTTPError(f"{status_code} {reason}")
    return r


@pytest.fixture
def clock():
    return FakeClock()
