from __future__ import annotations

import urllib.parse


def explorer_address_link(ecosystem: str, address: str) -> str:
    if ecosystem == "solana":
        return f"https://solscan.io/account/{address}"
    if ecosystem == "evm":
        return f"https://etherscan.io/address/{address}"
    if ecosystem == "bitcoin":
        return f"https://mempool.space/address/{address}"
    return ""


def phantom_browse_link(app_url: str) -> str:
    # Phantom universal link: opens app_url inside Phantom's in-app browser
    url = urllib.parse.quote(app_url, safe="")
    ref = urllib.parse.quote(_origin(app_url), safe="")
    return f"https://phantom.app/ul/browse/{url}?ref={ref}"


def _origin(url: str) -> str:
    parts = urllib.parse.urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return url
    return f"{parts.scheme}://{parts.netloc}"
