"""
Shared test constants and request helpers.
"""

DEFAULT_PASSWORD = "correct-horse-battery"

CHROME_WINDOWS_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
FIREFOX_LINUX_UA = "Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0"
SAFARI_IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
SAFARI_IPAD_UA = (
    "Mozilla/5.0 (iPad; CPU OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)


async def login(client, identifier: str, password: str = DEFAULT_PASSWORD, headers: dict = None):
    return await client.post(
        "/v1/auth/login",
        json={"identifier": identifier, "password": password},
        headers=headers or {},
    )


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}
