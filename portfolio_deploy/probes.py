"""HTTP/HTTPS reachability probes against the public domain."""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Tuple

import requests

from .log import logger


class ProbeOutcome(str, Enum):
    CONFIRMED = "confirmed"
    UNEXPECTED = "unexpected"
    INCONCLUSIVE = "inconclusive"


@dataclass(frozen=True)
class ProbeResult:
    url: str
    outcome: ProbeOutcome
    status_code: Optional[int] = None
    detail: str = ""

    @property
    def confirmed(self) -> bool:
        return self.outcome is ProbeOutcome.CONFIRMED

    def describe(self) -> str:
        code = f" (HTTP {self.status_code})" if self.status_code else ""
        detail = f": {self.detail}" if self.detail else ""
        return f"{self.url} {self.outcome.value}{code}{detail}"


SUCCESS_CLASSES: Tuple[int, ...] = (2,)
REDIRECT_OR_SUCCESS: Tuple[int, ...] = (2, 3)


class HttpProber:
    """Issues single GET requests without following redirects."""

    def __init__(self, timeout: int = 10, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()

    def probe(self, url: str, expect: Iterable[int] = SUCCESS_CLASSES) -> ProbeResult:
        """
        Request a URL and classify the response.

        Args:
            url: absolute http(s) URL
            expect: accepted status classes (2 for 2xx, 3 for 3xx)

        Returns:
            CONFIRMED when the status class is expected, UNEXPECTED for any other
            status or a TLS failure, INCONCLUSIVE for network errors and timeouts.
        """
        classes = tuple(expect)
        logger.debug(f"Probing {url} (expect {', '.join(f'{c}xx' for c in classes)})")
        try:
            response = self.session.get(
                url, timeout=self.timeout, allow_redirects=False
            )
        except requests.exceptions.SSLError as e:
            return ProbeResult(url, ProbeOutcome.UNEXPECTED, detail=f"TLS error: {e}")
        except requests.exceptions.RequestException as e:
            # connection refused, DNS failure, timeout
            return ProbeResult(url, ProbeOutcome.INCONCLUSIVE, detail=str(e))

        status = response.status_code
        response.close()
        if status // 100 in classes:
            return ProbeResult(url, ProbeOutcome.CONFIRMED, status)
        return ProbeResult(url, ProbeOutcome.UNEXPECTED, status)
