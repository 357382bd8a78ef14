import os
import sys

import requests

BASE_URL = os.getenv("ERROR_REPORTS_API_BASE_URL", "http://127.0.0.1:8000/api")


def check(endpoint: str, accepted: set[str]) -> bool:
    url = f"{BASE_URL}{endpoint}"
    try:
        res = requests.get(url, timeout=10)
    except requests.RequestException as exc:
        print(f"FAIL {endpoint}: request error ({exc})")
        return False
    if res.status_code != 200:
        print(f"FAIL {endpoint}: HTTP {res.status_code}")
        return False
    status = str(res.json().get("status", "")).upper()
    if status not in accepted:
        print(f"FAIL {endpoint}: status={status}")
        return False
    print(f"OK   {endpoint}: status={status}")
    return True


if __name__ == "__main__":
    ok = check("/health", {"OK"})
    ok = check("/doctor", {"OK", "WARN"}) and ok
    sys.exit(0 if ok else 1)
