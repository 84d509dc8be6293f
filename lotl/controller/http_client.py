from __future__ import annotations

import json
from typing import Any
from urllib.error import URLError
from urllib.request import Request, urlopen


class HttpClientError(Exception):
    pass


def http_get_json(url: str, timeout: float = 2.0) -> Any:
    """Fetch JSON from a DevTools HTTP endpoint such as `/json/version`."""
    req = Request(url, headers={"User-Agent": "lotl-controller/1.0"})
    try:
        with urlopen(req, timeout=timeout) as resp:
            return json.loads(resp.read().decode())
    except (TimeoutError, URLError, OSError) as exc:
        raise HttpClientError(f"{url}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise HttpClientError(f"{url}: invalid JSON ({exc})") from exc
